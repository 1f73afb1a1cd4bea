"""
Fixtures for tasks tests.
"""

from datetime import UTC, date, datetime, time, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.core.scheduler import TimerRegistry
from app.modules.tasks.jobs import RecurringTaskScheduler
from app.modules.tasks.models import (
    RepeatFrequency,
    Task,
    TaskPriority,
    TaskStatus,
    new_task_id,
)
from app.modules.tasks.repository import OccurrenceGenerationError, build_successor
from app.modules.tasks.schemas import CustomRepeat, NoRepeat, TaskRead


class InMemoryTaskStore:
    """
    Task store backed by a dict of snapshots.

    Mirrors ``TaskStore``: generating a successor inserts it and retires the
    predecessor, or raises ``OccurrenceGenerationError`` and changes nothing.
    """

    def __init__(self):
        self.tasks: dict[str, TaskRead] = {}
        self.fail_generation = False
        self.fail_queries = False

    def add(self, task: TaskRead) -> TaskRead:
        self.tasks[task.id] = task
        return task

    async def find_task(self, task_id: str) -> TaskRead | None:
        if self.fail_queries:
            raise ConnectionError("database unavailable")
        return self.tasks.get(task_id)

    async def find_tasks_with_active_custom_repeat(self, since_date: date) -> list[TaskRead]:
        if self.fail_queries:
            raise ConnectionError("database unavailable")
        return [
            task
            for task in self.tasks.values()
            if task.is_repeating and task.due_date is not None and task.due_date >= since_date
        ]

    async def generate_successor(
        self, predecessor: TaskRead, next_due: datetime, new_task_id: str
    ) -> str:
        stored = self.tasks.get(predecessor.id)
        if self.fail_generation:
            raise OccurrenceGenerationError(predecessor.id, "connection reset")
        if stored is None or not stored.is_repeating:
            raise OccurrenceGenerationError(
                predecessor.id, "task was deleted or its repeat rule changed"
            )

        successor = TaskRead.model_validate(build_successor(predecessor, next_due, new_task_id))
        self.tasks[new_task_id] = successor
        self.tasks[predecessor.id] = stored.model_copy(update={"repeat_config": NoRepeat()})
        return new_task_id


def due_fields(instant: datetime) -> dict:
    """Split an instant into the stored due date and time fields."""
    return {"due_date": instant.date(), "due_time": instant.time()}


def utc_now() -> datetime:
    return datetime.now(UTC)


@pytest.fixture
def make_task():
    """Build a task snapshot. Defaults to a monthly task due 2024-03-31 23:59."""

    def _make(**overrides) -> TaskRead:
        values = {
            "id": new_task_id(),
            "title": "Submit lesson plans",
            "description": "Upload next month's lesson plans",
            "due_date": date(2024, 3, 31),
            "due_time": time(23, 59),
            "priority": TaskPriority.HIGH,
            "assigned_to": ["teacher-17"],
            "tagged_members": ["head-of-science"],
            "repeat_config": CustomRepeat(interval=1, frequency=RepeatFrequency.MONTHS),
        }
        values.update(overrides)
        return TaskRead(**values)

    return _make


@pytest.fixture
def make_future_task(make_task):
    """Build a repeating task due ``delta`` from now."""

    def _make(delta: timedelta = timedelta(hours=1), **overrides) -> TaskRead:
        return make_task(**due_fields(utc_now() + delta), **overrides)

    return _make


@pytest.fixture
def task_store():
    """In-memory task store."""
    return InMemoryTaskStore()


@pytest.fixture
def timer_registry():
    """Timer registry that is never started: timers are armed but never fire."""
    registry = TimerRegistry(timezone="UTC")
    yield registry
    registry.shutdown()


@pytest.fixture
def task_scheduler(timer_registry, task_store):
    """Recurring task scheduler over an unstarted registry and an in-memory store."""
    return RecurringTaskScheduler(timer_registry, task_store)


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.refresh = AsyncMock()
    db.execute = AsyncMock()
    db.delete = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def mock_scheduler():
    """Create a mock recurring task scheduler."""
    scheduler = MagicMock(spec=RecurringTaskScheduler)
    scheduler.schedule_next_occurrence.return_value = True
    scheduler.cancel_job_for_task.return_value = False
    return scheduler


@pytest.fixture
def sample_task_model():
    """Create a sample repeating task model, as loaded from the database."""
    return Task(
        id="8d5e3b0c-1f7a-4a53-9d1e-3f0c6b2a7e41",
        title="Submit lesson plans",
        description="Upload next month's lesson plans",
        due_date=date(2024, 3, 31),
        due_time=time(23, 59),
        priority=TaskPriority.HIGH,
        status=TaskStatus.NOT_STARTED,
        attachment_required=False,
        text_submission_required=True,
        submission_text="",
        attachments=[],
        assigned_to=["teacher-17"],
        tagged_members=[],
        repeat_config={
            "type": "Custom",
            "interval": 1,
            "frequency": "months",
            "endCondition": {"type": "After", "count": 3},
        },
        occurrence_count=0,
        generator_task_id=None,
        created_at=datetime(2024, 3, 1, 9, 0, tzinfo=UTC),
        updated_at=datetime(2024, 3, 1, 9, 0, tzinfo=UTC),
    )


@pytest_asyncio.fixture
async def session_maker():
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
