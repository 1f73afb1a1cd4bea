"""
Tasks Repository

Database operations for tasks. All operations are async.

Two entry points:
- Module-level functions take an ``AsyncSession`` and serve the request layer
- ``TaskStore`` owns its own sessions and serves the recurring scheduler,
  which runs outside any request

Design Principles:
- Single responsibility - only database operations, no scheduling decisions
- Rows handed to the scheduler are detached, validated ``TaskRead`` snapshots
- Generating the next occurrence is one transaction: insert the successor and
  retire the predecessor, or neither
"""

import logging
from collections.abc import Sequence
from datetime import date, datetime

from pydantic import ValidationError
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.modules.tasks.models import RepeatType, Task, TaskStatus, new_task_id
from app.modules.tasks.schemas import (
    RETIRED_REPEAT_CONFIG,
    TaskCreate,
    TaskRead,
    dump_repeat_config,
)

logger = logging.getLogger(__name__)


class OccurrenceGenerationError(Exception):
    """Raised when the successor of a repeating task could not be committed."""

    def __init__(self, task_id: str, reason: str):
        self.task_id = task_id
        self.reason = reason
        super().__init__(f"Could not generate next occurrence of task {task_id}: {reason}")


def _is_active_custom_repeat():
    """SQL predicate: the stored repeat rule is an active Custom rule."""
    return Task.repeat_config["type"].as_string() == RepeatType.CUSTOM.value


# ============================================
# Request-layer operations
# ============================================


async def get_by_id(db: AsyncSession, task_id: str) -> Task | None:
    """Get a task by ID."""
    result = await db.execute(select(Task).where(Task.id == task_id))
    return result.scalar_one_or_none()


async def list_all(db: AsyncSession) -> list[Task]:
    """List all tasks, newest first."""
    result = await db.execute(
        select(Task).order_by(Task.created_at.desc(), Task.due_date.asc())
    )
    return list(result.scalars().all())


async def create(db: AsyncSession, data: TaskCreate) -> Task:
    """Create a new task. A client-supplied id is kept, otherwise one is generated."""

    new_task = Task(
        id=data.id or new_task_id(),
        title=data.title,
        description=data.description,
        due_date=data.due_date,
        due_time=data.due_time,
        priority=data.priority,
        status=data.status,
        attachment_required=data.attachment_required,
        text_submission_required=data.text_submission_required,
        submission_text=data.submission_text,
        assigned_to=list(data.assigned_to),
        tagged_members=list(data.tagged_members),
        repeat_config=dump_repeat_config(data.repeat_config),
        occurrence_count=data.occurrence_count,
        attachments=[attachment.model_dump() for attachment in data.attachments],
        # A task created through the API always starts its own series
        generator_task_id=None,
    )

    db.add(new_task)
    await db.commit()
    await db.refresh(new_task)

    return new_task


async def update_fields(db: AsyncSession, task: Task, values: dict) -> Task:
    """
    Write the given column values to a task.

    Args:
        db: Database session
        task: The task to update (loaded in ``db``)
        values: Column name to new value

    Returns:
        The refreshed task
    """
    for key, value in values.items():
        if hasattr(task, key):
            setattr(task, key, value)

    await db.commit()
    await db.refresh(task)

    return task


async def delete_task(db: AsyncSession, task: Task) -> None:
    """Delete a single task."""
    await db.delete(task)
    await db.commit()


async def get_series(db: AsyncSession, generator_task_id: str) -> list[Task]:
    """Get the first task of a series and every occurrence generated from it."""
    result = await db.execute(
        select(Task)
        .where(or_(Task.id == generator_task_id, Task.generator_task_id == generator_task_id))
        .order_by(Task.occurrence_count.asc())
    )
    return list(result.scalars().all())


async def delete_many(db: AsyncSession, task_ids: Sequence[str]) -> int:
    """Delete tasks by id in a single statement. Returns the number deleted."""
    if not task_ids:
        return 0

    result = await db.execute(delete(Task).where(Task.id.in_(list(task_ids))))
    await db.commit()
    return result.rowcount or 0


async def get_with_active_custom_repeat(db: AsyncSession, since_date: date) -> list[Task]:
    """Get tasks with an active Custom repeat rule due on or after ``since_date``."""
    result = await db.execute(
        select(Task)
        .where(_is_active_custom_repeat(), Task.due_date >= since_date)
        .order_by(Task.due_date.asc(), Task.due_time.asc())
    )
    return list(result.scalars().all())


def build_successor(predecessor: TaskRead, next_due: datetime, new_id: str) -> Task:
    """
    Build the next occurrence of a repeating task.

    Content and the repeat rule are copied; progress and submissions are reset.
    """
    return Task(
        id=new_id,
        title=predecessor.title,
        description=predecessor.description,
        due_date=next_due.date(),
        due_time=next_due.time(),
        priority=predecessor.priority,
        status=TaskStatus.NOT_STARTED,
        attachment_required=predecessor.attachment_required,
        text_submission_required=predecessor.text_submission_required,
        submission_text="",
        attachments=[],
        assigned_to=list(predecessor.assigned_to),
        tagged_members=list(predecessor.tagged_members),
        repeat_config=dump_repeat_config(predecessor.repeat_config),
        occurrence_count=predecessor.occurrence_count + 1,
        generator_task_id=predecessor.series_id,
    )


# ============================================
# Scheduler-facing store
# ============================================


class TaskStore:
    """
    Durable task storage used by the recurring scheduler.

    Each call opens and closes its own session, so no ORM state is carried
    across timer callbacks.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def find_task(self, task_id: str) -> TaskRead | None:
        """
        Load a task snapshot.

        Raises:
            pydantic.ValidationError: If the stored repeat rule is not recognized
        """
        async with self._session_maker() as db:
            task = await get_by_id(db, task_id)
            if task is None:
                return None
            return TaskRead.model_validate(task)

    async def find_tasks_with_active_custom_repeat(self, since_date: date) -> list[TaskRead]:
        """
        Load every task with an active Custom rule due on or after ``since_date``.

        Rows whose stored rule fails validation are skipped with a warning.
        """
        async with self._session_maker() as db:
            rows = await get_with_active_custom_repeat(db, since_date)

        snapshots: list[TaskRead] = []
        for row in rows:
            try:
                snapshots.append(TaskRead.model_validate(row))
            except ValidationError as e:
                logger.warning(f"Skipping task {row.id}: unrecognized repeat config ({e})")
        return snapshots

    async def generate_successor(
        self,
        predecessor: TaskRead,
        next_due: datetime,
        new_task_id: str,
    ) -> str:
        """
        Insert the next occurrence and retire ``predecessor`` in one transaction.

        The predecessor is only retired if its stored rule is still Custom;
        if another writer already retired, edited or deleted it, the whole
        transaction is rolled back.

        Args:
            predecessor: The occurrence whose timer fired
            next_due: Due instant of the new occurrence (reference timezone)
            new_task_id: Id for the new occurrence

        Returns:
            The new occurrence's id

        Raises:
            OccurrenceGenerationError: If the transaction was rolled back
        """
        async with self._session_maker() as db:
            try:
                db.add(build_successor(predecessor, next_due, new_task_id))

                result = await db.execute(
                    update(Task)
                    .where(Task.id == predecessor.id, _is_active_custom_repeat())
                    .values(repeat_config=dict(RETIRED_REPEAT_CONFIG))
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise OccurrenceGenerationError(
                        predecessor.id, "task was deleted or its repeat rule changed"
                    )

                await db.commit()
            except OccurrenceGenerationError:
                await db.rollback()
                raise
            except Exception as e:
                await db.rollback()
                raise OccurrenceGenerationError(predecessor.id, str(e)) from e

        logger.info(
            f"Created occurrence {new_task_id} (#{predecessor.occurrence_count + 1}) "
            f"of series {predecessor.series_id}, retired {predecessor.id}"
        )
        return new_task_id
