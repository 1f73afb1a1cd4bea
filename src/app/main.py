"""
School Tasks API - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Logging
- Database connection
- Timer registry and recurring task scheduler
- CORS middleware
- API routing
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.api import api_router
from app.core.config import settings
from app.core.database import async_session_maker, close_db, init_db
from app.core.logging_setup import setup_logging
from app.core.scheduler import TimerRegistry
from app.modules.tasks.jobs import RecurringTaskScheduler
from app.modules.tasks.repository import TaskStore

logger = logging.getLogger(__name__)


def build_task_scheduler() -> RecurringTaskScheduler:
    """Wire a timer registry and task store into a recurring task scheduler."""
    registry = TimerRegistry(
        timezone=settings.scheduler_timezone,
        max_delay=timedelta(seconds=settings.scheduler_max_delay_seconds),
    )
    store = TaskStore(async_session_maker)
    return RecurringTaskScheduler(registry, store, tz=settings.reference_timezone)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events including:
    - Database connection
    - Recurring task scheduler (rehydrated from the database)
    """
    # Startup
    setup_logging(settings.log_level)
    logger.info(f"Starting School Tasks API in {settings.python_env} mode...")

    # Initialize Database
    try:
        await init_db()
        logger.info("[OK] Database connected")
    except Exception as e:
        logger.error(f"[FAIL] Database connection failed: {e}")
        if settings.is_production:
            raise

    # Initialize Recurring Task Scheduler
    task_scheduler = build_task_scheduler()
    app.state.task_scheduler = task_scheduler
    task_scheduler.registry.start()

    if settings.scheduler_enabled:
        # Never fatal: the API keeps serving with repeating tasks unscheduled
        armed = await task_scheduler.initialize_scheduler()
        logger.info(f"[OK] Recurring task scheduler started ({armed} timers armed)")
    else:
        logger.info("Recurring task scheduler bootstrap disabled by configuration")

    yield  # Application runs here

    # Shutdown
    logger.info("Shutting down School Tasks API...")

    task_scheduler.registry.shutdown()
    app.state.task_scheduler = None
    logger.info("[OK] Recurring task scheduler stopped")

    await close_db()
    logger.info("[OK] Cleanup complete")


app = FastAPI(
    title="School Tasks API",
    description="Task management with repeating task series for school staff",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api/v1")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint - API welcome message."""
    return {
        "message": "Welcome to the School Tasks API",
        "status": "running",
        "environment": settings.python_env,
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.get("/ready", tags=["Health"])
async def readiness_check(request: Request) -> dict[str, str]:
    """Readiness check endpoint."""
    task_scheduler = getattr(request.app.state, "task_scheduler", None)
    scheduler_state = "running" if task_scheduler and task_scheduler.registry.running else "stopped"
    return {"status": "ready", "scheduler": scheduler_state}


@app.get("/debug/db", tags=["Debug"])
async def debug_db():
    """Test database connection."""
    try:
        async with async_session_maker() as session:
            result = await session.execute(text("SELECT 1"))
            return {"database": "connected", "result": result.scalar()}
    except Exception as e:
        return {"database": "error", "message": str(e)}


# ============================================
# Recurring Task Scheduler Debug Endpoints
# ============================================
# Inspect armed timers and re-run the startup scan by hand, e.g. after fixing
# a task whose series halted on a failed transaction.


def _require_task_scheduler(request: Request) -> RecurringTaskScheduler:
    if not settings.is_development:
        raise HTTPException(status_code=404, detail="Not Found")

    task_scheduler = getattr(request.app.state, "task_scheduler", None)
    if task_scheduler is None:
        raise HTTPException(status_code=503, detail="Task scheduler is not running")
    return task_scheduler


@app.get("/debug/timers", tags=["Debug"])
async def list_timers(request: Request):
    """
    List armed recurring task timers.

    Returns:
        Armed timers ordered by fire time.
    """
    task_scheduler = _require_task_scheduler(request)
    return {"timers": task_scheduler.registry.describe()}


@app.post("/debug/timers/rehydrate", tags=["Debug"])
async def rehydrate_timers(request: Request):
    """
    Re-run the startup scan: disarm everything, then re-arm every pending
    repeating task from the database.

    Returns:
        Number of timers armed.
    """
    task_scheduler = _require_task_scheduler(request)
    armed = await task_scheduler.initialize_scheduler()
    return {"armed": armed}
