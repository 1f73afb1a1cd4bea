"""
Tasks Router

API endpoints for task management.

Endpoints:
- GET /tasks - List tasks
- GET /tasks/{id} - Get a single task
- POST /tasks - Create a task (schedules it when it repeats)
- PUT /tasks/{id} - Partially update a task (re-arms it when it still repeats)
- DELETE /tasks/{id} - Delete a task
- DELETE /tasks/series/{id} - Delete a whole repeating series

Every update or delete cancels the task's pending timer before the change
is written.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.modules.tasks import service
from app.modules.tasks.jobs import RecurringTaskScheduler
from app.modules.tasks.schemas import (
    TaskCreate,
    TaskCreateResponse,
    TaskDeleteResponse,
    TaskRead,
    TaskUpdate,
    TaskUpdateResponse,
)
from app.modules.tasks.service import TaskServiceError

logger = logging.getLogger(__name__)

router = APIRouter()


def get_task_scheduler(request: Request) -> RecurringTaskScheduler:
    """
    Get the recurring task scheduler owned by the running application.

    Raises:
        HTTPException 503: If the scheduler has not been started
    """
    scheduler = getattr(request.app.state, "task_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "SCHEDULER_UNAVAILABLE",
                "message": "The task scheduler is not running.",
            },
        )
    return scheduler


def _service_error_to_http(e: TaskServiceError) -> HTTPException:
    return HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.error_code,
            "message": e.message,
        },
    )


def _internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


@router.get(
    "",
    response_model=list[TaskRead],
    summary="List Tasks",
)
async def list_tasks(db: AsyncSession = Depends(get_db)) -> list[TaskRead]:
    """List all tasks, newest first."""
    try:
        return await service.list_tasks(db)
    except Exception as e:
        logger.exception(f"Unexpected error listing tasks: {e}")
        raise _internal_error() from e


@router.get(
    "/{task_id}",
    response_model=TaskRead,
    summary="Get Task",
    responses={404: {"description": "Task not found"}},
)
async def get_task(task_id: str, db: AsyncSession = Depends(get_db)) -> TaskRead:
    """Get a single task by ID."""
    try:
        return await service.get_task(db, task_id)
    except TaskServiceError as e:
        raise _service_error_to_http(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error fetching task {task_id}: {e}")
        raise _internal_error() from e


@router.post(
    "",
    response_model=TaskCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Task",
    description="""
Create a task.

When `repeatConfig.type` is `Custom`, a timer is armed for the task's due
date and time. When it fires, the next occurrence is created and the
current one stops repeating.
""",
    responses={
        409: {"description": "A task with the supplied id already exists"},
        422: {"description": "Validation error - invalid task or repeat rule"},
    },
)
async def create_task(
    data: TaskCreate,
    db: AsyncSession = Depends(get_db),
    scheduler: RecurringTaskScheduler = Depends(get_task_scheduler),
) -> TaskCreateResponse:
    """Create a task and schedule it if it repeats."""
    try:
        task = await service.create_task(db, data, scheduler)
        return TaskCreateResponse(message="Task added successfully", task=task)
    except TaskServiceError as e:
        logger.warning(f"Task creation rejected: {e.message}")
        raise _service_error_to_http(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error creating task: {e}")
        raise _internal_error() from e


@router.put(
    "/{task_id}",
    response_model=TaskUpdateResponse,
    summary="Update Task",
    responses={
        400: {"description": "No fields supplied"},
        404: {"description": "Task not found"},
    },
)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    db: AsyncSession = Depends(get_db),
    scheduler: RecurringTaskScheduler = Depends(get_task_scheduler),
) -> TaskUpdateResponse:
    """Update the supplied fields of a task and re-arm it if it still repeats."""
    try:
        task, scheduled = await service.update_task(db, task_id, data, scheduler)
        return TaskUpdateResponse(
            message="Task updated successfully",
            task=task,
            scheduled=scheduled,
        )
    except TaskServiceError as e:
        raise _service_error_to_http(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error updating task {task_id}: {e}")
        raise _internal_error() from e


@router.delete(
    "/series/{generator_task_id}",
    response_model=TaskDeleteResponse,
    summary="Delete Task Series",
    responses={404: {"description": "Task series not found"}},
)
async def delete_series(
    generator_task_id: str,
    db: AsyncSession = Depends(get_db),
    scheduler: RecurringTaskScheduler = Depends(get_task_scheduler),
) -> TaskDeleteResponse:
    """Delete the first task of a series and every occurrence generated from it."""
    try:
        deleted = await service.delete_series(db, generator_task_id, scheduler)
        return TaskDeleteResponse(
            message="Entire task series deleted successfully",
            deleted_ids=deleted,
        )
    except TaskServiceError as e:
        raise _service_error_to_http(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error deleting task series {generator_task_id}: {e}")
        raise _internal_error() from e


@router.delete(
    "/{task_id}",
    response_model=TaskDeleteResponse,
    summary="Delete Task",
    responses={404: {"description": "Task not found"}},
)
async def delete_task(
    task_id: str,
    db: AsyncSession = Depends(get_db),
    scheduler: RecurringTaskScheduler = Depends(get_task_scheduler),
) -> TaskDeleteResponse:
    """Delete a single task."""
    try:
        deleted = await service.delete_task(db, task_id, scheduler)
        return TaskDeleteResponse(message="Task deleted successfully", deleted_ids=deleted)
    except TaskServiceError as e:
        raise _service_error_to_http(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error deleting task {task_id}: {e}")
        raise _internal_error() from e
