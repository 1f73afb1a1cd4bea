"""create tasks table

Revision ID: a7c1e2d3f4b5
Revises:
Create Date: 2026-10-18 12:00:00.000000

This migration:
1. Creates the task_priority and task_status enum types
2. Creates the tasks table, including the repeat rule (JSON) and the
   generator_task_id back-reference that links the occurrences of a series
3. Adds indexes for the scheduler's startup scan (due_date), series lookups
   (generator_task_id) and status filtering

generator_task_id deliberately has no foreign key: deleting the first task of
a series must not cascade to the occurrences generated from it.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a7c1e2d3f4b5"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the tasks table."""
    task_priority_enum = postgresql.ENUM(
        "LOW",
        "MEDIUM",
        "HIGH",
        name="task_priority",
        create_type=False,
    )
    task_priority_enum.create(op.get_bind(), checkfirst=True)

    task_status_enum = postgresql.ENUM(
        "NOT_STARTED",
        "IN_PROGRESS",
        "COMPLETED",
        "OVERDUE",
        name="task_status",
        create_type=False,
    )
    task_status_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "tasks",
        sa.Column("id", sa.String(length=36), nullable=False),
        # Display
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        # Trigger instant (wall clock in the scheduler's reference timezone)
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("due_time", sa.Time(), nullable=False, server_default="23:59:00"),
        sa.Column("priority", task_priority_enum, nullable=False, server_default="MEDIUM"),
        sa.Column("status", task_status_enum, nullable=False, server_default="NOT_STARTED"),
        # Submission
        sa.Column("attachment_required", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column(
            "text_submission_required", sa.Boolean(), nullable=False, server_default="false"
        ),
        sa.Column("submission_text", sa.Text(), nullable=False, server_default=""),
        sa.Column("attachments", sa.JSON(), nullable=False, server_default="[]"),
        # People
        sa.Column("assigned_to", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("tagged_members", sa.JSON(), nullable=False, server_default="[]"),
        # Recurrence
        sa.Column(
            "repeat_config",
            sa.JSON(),
            nullable=False,
            server_default='{"type": "None"}',
        ),
        sa.Column("occurrence_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("generator_task_id", sa.String(length=36), nullable=True),
        # Audit timestamps
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_tasks_due_date", "tasks", ["due_date"], unique=False)
    op.create_index("ix_tasks_generator_task_id", "tasks", ["generator_task_id"], unique=False)
    op.create_index("ix_tasks_status", "tasks", ["status"], unique=False)


def downgrade() -> None:
    """Drop the tasks table and its enum types."""
    op.drop_index("ix_tasks_status", table_name="tasks")
    op.drop_index("ix_tasks_generator_task_id", table_name="tasks")
    op.drop_index("ix_tasks_due_date", table_name="tasks")
    op.drop_table("tasks")

    postgresql.ENUM(name="task_status").drop(op.get_bind(), checkfirst=True)
    postgresql.ENUM(name="task_priority").drop(op.get_bind(), checkfirst=True)
