"""
Tasks Service Layer

Business logic for task management. Orchestrates repository operations and
keeps the recurring scheduler in step with stored tasks.

Scheduler contract:
- Any timer for a task is cancelled before the task is updated or deleted,
  so a stale timer never fires against data that no longer matches it
- After a create or update, a task with a Custom repeat rule is (re)armed
  from its stored state
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.tasks import repository
from app.modules.tasks.jobs import RecurringTaskScheduler
from app.modules.tasks.schemas import TaskCreate, TaskRead, TaskUpdate

logger = logging.getLogger(__name__)


class TaskServiceError(Exception):
    """Base exception for task service errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class TaskNotFoundError(TaskServiceError):
    """Raised when a task is not found."""

    def __init__(self, task_id: str | None = None):
        message = f"Task {task_id} not found" if task_id else "Task not found"
        super().__init__(
            message=message,
            error_code="TASK_NOT_FOUND",
            status_code=404,
        )


class TaskSeriesNotFoundError(TaskServiceError):
    """Raised when no task belongs to the requested series."""

    def __init__(self, generator_task_id: str):
        super().__init__(
            message=f"Task series {generator_task_id} not found",
            error_code="TASK_SERIES_NOT_FOUND",
            status_code=404,
        )


class DuplicateTaskError(TaskServiceError):
    """Raised when a task with the requested id already exists."""

    def __init__(self, task_id: str):
        super().__init__(
            message=f"A task with id {task_id} already exists",
            error_code="DUPLICATE_TASK",
            status_code=409,
        )


class EmptyTaskUpdateError(TaskServiceError):
    """Raised when an update request carries no fields."""

    def __init__(self):
        super().__init__(
            message="No valid fields provided for update.",
            error_code="EMPTY_UPDATE",
            status_code=400,
        )


async def list_tasks(db: AsyncSession) -> list[TaskRead]:
    """List every task."""
    tasks = await repository.list_all(db)
    return [TaskRead.model_validate(task) for task in tasks]


async def get_task(db: AsyncSession, task_id: str) -> TaskRead:
    """
    Get a task by ID.

    Raises:
        TaskNotFoundError: If the task doesn't exist
    """
    task = await repository.get_by_id(db, task_id)
    if task is None:
        raise TaskNotFoundError(task_id)
    return TaskRead.model_validate(task)


async def create_task(
    db: AsyncSession,
    data: TaskCreate,
    scheduler: RecurringTaskScheduler,
) -> TaskRead:
    """
    Create a task and schedule it if it repeats.

    Args:
        db: Database session
        data: Task data from the request
        scheduler: Recurring task scheduler

    Returns:
        The created task

    Raises:
        DuplicateTaskError: If the client-supplied id is taken
    """
    if data.id and await repository.get_by_id(db, data.id) is not None:
        logger.warning(f"Duplicate task id rejected: {data.id}")
        raise DuplicateTaskError(data.id)

    task = await repository.create(db, data)
    created = TaskRead.model_validate(task)
    logger.info(f"Created task {created.id} '{created.title}'")

    if created.is_repeating:
        scheduler.schedule_next_occurrence(created)

    return created


async def update_task(
    db: AsyncSession,
    task_id: str,
    data: TaskUpdate,
    scheduler: RecurringTaskScheduler,
) -> tuple[TaskRead, bool]:
    """
    Apply a partial update to a task and re-arm it if it still repeats.

    The task's timer is cancelled before anything is written.

    Returns:
        Tuple of (updated task, whether a timer is armed for it)

    Raises:
        EmptyTaskUpdateError: If no fields were supplied
        TaskNotFoundError: If the task doesn't exist
    """
    values = data.to_column_values()
    if not values:
        raise EmptyTaskUpdateError()

    scheduler.cancel_job_for_task(task_id)

    task = await repository.get_by_id(db, task_id)
    if task is None:
        raise TaskNotFoundError(task_id)

    task = await repository.update_fields(db, task, values)
    updated = TaskRead.model_validate(task)
    logger.info(f"Updated task {task_id}: {sorted(values)}")

    scheduled = False
    if updated.is_repeating:
        scheduled = scheduler.schedule_next_occurrence(updated)

    return updated, scheduled


async def delete_task(
    db: AsyncSession,
    task_id: str,
    scheduler: RecurringTaskScheduler,
) -> list[str]:
    """
    Delete a single task, cancelling its timer first.

    Returns:
        The deleted id

    Raises:
        TaskNotFoundError: If the task doesn't exist
    """
    scheduler.cancel_job_for_task(task_id)

    task = await repository.get_by_id(db, task_id)
    if task is None:
        raise TaskNotFoundError(task_id)

    await repository.delete_task(db, task)
    logger.info(f"Deleted task {task_id}")

    return [task_id]


async def delete_series(
    db: AsyncSession,
    generator_task_id: str,
    scheduler: RecurringTaskScheduler,
) -> list[str]:
    """
    Delete a whole series: its first task and every occurrence generated from it.

    Every timer in the series is cancelled before the rows are deleted.

    Returns:
        The deleted ids

    Raises:
        TaskSeriesNotFoundError: If the series has no tasks
    """
    scheduler.cancel_job_for_task(generator_task_id)

    tasks = await repository.get_series(db, generator_task_id)
    if not tasks:
        raise TaskSeriesNotFoundError(generator_task_id)

    task_ids = [task.id for task in tasks]
    for task_id in task_ids:
        scheduler.cancel_job_for_task(task_id)

    await repository.delete_many(db, task_ids)
    logger.info(f"Deleted task series {generator_task_id} ({len(task_ids)} tasks)")

    return task_ids
