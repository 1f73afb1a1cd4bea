"""
Task Models

Database model for staff tasks, including the repeat rule that drives
recurring task generation.

A repeating series is a chain of rows linked by ``generator_task_id``: every
occurrence after the first points at the first task in the series. Only the
latest occurrence carries an active ``Custom`` repeat rule; earlier
occurrences are retired to ``{"type": "None"}`` once their successor exists.
"""

import enum
import uuid
from datetime import date, datetime, time

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    Time,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

DEFAULT_DUE_TIME = time(23, 59)
DEFAULT_TITLE = "Untitled Task"


class TaskStatus(str, enum.Enum):
    """Progress of a single task occurrence."""

    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"


class TaskPriority(str, enum.Enum):
    """Task priority."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class RepeatType(str, enum.Enum):
    """Discriminator of the stored repeat rule."""

    NONE = "None"
    CUSTOM = "Custom"


class RepeatFrequency(str, enum.Enum):
    """Calendar unit a Custom repeat rule advances by."""

    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


class EndConditionType(str, enum.Enum):
    """Discriminator of a Custom repeat rule's end condition."""

    NONE = "None"
    AFTER = "After"
    ON_DATE = "OnDate"


def new_task_id() -> str:
    """Generate a new opaque task identifier."""
    return str(uuid.uuid4())


class Task(Base):
    """
    A task assigned to staff members.

    ``repeat_config`` is stored as JSON and validated through
    ``app.modules.tasks.schemas.RepeatConfig`` whenever it is read.
    """

    __tablename__ = "tasks"

    # Primary key
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_task_id)

    # Display
    title: Mapped[str] = mapped_column(String(255), nullable=False, default=DEFAULT_TITLE)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Trigger instant, interpreted in the scheduler's reference timezone
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_time: Mapped[time] = mapped_column(Time, nullable=False, default=DEFAULT_DUE_TIME)

    priority: Mapped[TaskPriority] = mapped_column(
        Enum(TaskPriority, name="task_priority"),
        nullable=False,
        default=TaskPriority.MEDIUM,
    )
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, name="task_status"),
        nullable=False,
        default=TaskStatus.NOT_STARTED,
    )

    # Submission requirements and results
    attachment_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    text_submission_required: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    submission_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attachments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # People
    assigned_to: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    tagged_members: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Recurrence
    repeat_config: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: {"type": RepeatType.NONE.value},
    )
    occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Non-owning back-reference to the first task of the series (no FK:
    # deleting the first occurrence must not cascade to the rest)
    generator_task_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_tasks_due_date", "due_date"),
        Index("ix_tasks_generator_task_id", "generator_task_id"),
        Index("ix_tasks_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Task {self.id} '{self.title}' due {self.due_date} {self.due_time}>"
