"""
Recurring Task Jobs

Keeps repeating task series alive. Each series has at most one armed timer,
for its latest occurrence. When that timer fires:
1. The next occurrence's due instant is computed from the repeat rule
2. The next occurrence is inserted and the firing one is retired, in a single
   transaction
3. A timer is armed for the new occurrence

The chain continues until the repeat rule's end condition is met.

Design Principles:
- A fired timer only carries a task id; everything else is re-read from the
  store, so no stale task state is captured across the chain
- Fire handlers run one at a time
- A failed transaction is logged and the series halts there; it is never
  retried blindly, since a retry could generate a duplicate occurrence
- Nothing raised while handling a timer escapes to the event loop

Startup:
- ``initialize_scheduler`` re-arms every pending occurrence from storage. It
  is the only recovery path for timers lost to a restart and for occurrences
  due beyond the timer horizon.
"""

import asyncio
import logging
from datetime import UTC, date, datetime, tzinfo

from pydantic import ValidationError

from app.core.scheduler import TimerRegistry
from app.modules.tasks.models import new_task_id
from app.modules.tasks.recurrence import combine_due, compute_next_occurrence
from app.modules.tasks.repository import OccurrenceGenerationError, TaskStore
from app.modules.tasks.schemas import TaskRead

logger = logging.getLogger(__name__)


class RecurringTaskScheduler:
    """
    Arms, disarms and fires the timers of repeating task series.

    Args:
        registry: Timer registry the scheduler arms timers in
        store: Durable task storage
        tz: Reference timezone of stored due dates and times
    """

    def __init__(self, registry: TimerRegistry, store: TaskStore, tz: tzinfo = UTC):
        self._registry = registry
        self._store = store
        self._tz = tz
        self._fire_lock = asyncio.Lock()

    @property
    def registry(self) -> TimerRegistry:
        return self._registry

    def _now(self) -> datetime:
        return datetime.now(self._tz)

    def _today(self) -> date:
        return self._now().date()

    # ------------------------------------------------------------------
    # Collaborator entry points
    # ------------------------------------------------------------------

    def schedule_next_occurrence(self, task: TaskRead) -> bool:
        """
        Arm a timer for ``task``'s due instant.

        Any timer already armed for the task is cancelled first. Nothing is
        armed for tasks that do not repeat, or whose due instant is not
        strictly in the future.

        Call after creating or updating a task with a Custom repeat rule.

        Returns:
            True if a timer is now armed for the task
        """
        self._registry.disarm(task.id)

        if not task.is_repeating:
            return False

        trigger_at = combine_due(task.due_date, task.due_time, self._tz)
        if trigger_at is None or trigger_at <= self._now():
            logger.debug(f"Task {task.id} is not due in the future, not scheduling")
            return False

        armed = self._registry.arm(task.id, trigger_at, self.handle_timer_fired)
        if armed:
            logger.info(
                f"Scheduled task '{task.title}' ({task.id}) to generate its next "
                f"occurrence at {trigger_at.isoformat()}"
            )
        return armed

    def cancel_job_for_task(self, task_id: str) -> bool:
        """
        Cancel the timer armed for ``task_id``, if any.

        Call before every update or delete of a task, before the change is
        written.
        """
        cancelled = self._registry.disarm(task_id)
        if cancelled:
            logger.info(f"Cancelled scheduled job for task {task_id}")
        return cancelled

    async def initialize_scheduler(self, today: date | None = None) -> int:
        """
        Re-arm every pending repeating task from storage.

        Intended to run once at process start. Failure to query storage is
        logged and leaves the scheduler empty; it never raises.

        Args:
            today: Earliest due date to consider (defaults to today in the
                reference timezone)

        Returns:
            Number of timers armed
        """
        logger.info("Initializing recurring task scheduler...")

        cleared = self._registry.disarm_all()
        if cleared:
            logger.warning(f"Cleared {cleared} timers left over from a previous initialization")

        since = today or self._today()
        try:
            tasks = await self._store.find_tasks_with_active_custom_repeat(since)
        except Exception as e:
            logger.error(
                f"Recurring task scheduler initialization failed: {e}. "
                "Repeating tasks stay unscheduled until the next restart.",
                exc_info=True,
            )
            return 0

        logger.info(f"Found {len(tasks)} repeating tasks due on or after {since.isoformat()}")

        armed = 0
        for task in tasks:
            if self.schedule_next_occurrence(task):
                armed += 1

        logger.info(f"Recurring task scheduler initialized: {armed} timers armed")
        return armed

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def handle_timer_fired(self, task_id: str) -> None:
        """
        Generate the next occurrence of the task whose timer fired.

        Runs as the timer's action. Handlers are serialized with a lock, and
        every failure is logged here rather than raised.
        """
        async with self._fire_lock:
            try:
                await self._generate_next_occurrence(task_id)
            except Exception as e:
                logger.error(
                    f"Unexpected error generating next occurrence of task {task_id}: {e}",
                    exc_info=True,
                )

    async def _generate_next_occurrence(self, task_id: str) -> str | None:
        """
        Returns:
            Id of the generated occurrence, or None if nothing was generated
        """
        try:
            task = await self._store.find_task(task_id)
        except ValidationError as e:
            logger.error(f"Task {task_id} has an unrecognized repeat config, not generating: {e}")
            return None

        if task is None:
            logger.info(f"Task {task_id} no longer exists, nothing to generate")
            return None

        if not task.is_repeating:
            logger.info(f"Task {task_id} no longer repeats, nothing to generate")
            return None

        # Moved into the future while this callback was queued
        trigger_at = combine_due(task.due_date, task.due_time, self._tz)
        if trigger_at is not None and trigger_at > self._now():
            logger.info(f"Task {task_id} was rescheduled to {trigger_at.isoformat()}, re-arming")
            self.schedule_next_occurrence(task)
            return None

        next_due = compute_next_occurrence(task, self._tz)
        if next_due is None:
            logger.info(f"End condition met for '{task.title}' ({task_id}). Series concluded.")
            return None

        successor_id = new_task_id()
        try:
            await self._store.generate_successor(task, next_due, successor_id)
        except OccurrenceGenerationError as e:
            logger.error(
                f"Rolled back next occurrence of task {task_id}: {e.reason}. "
                "The series is halted until the task is edited."
            )
            return None

        successor = await self._store.find_task(successor_id)
        if successor is None:
            logger.error(f"Generated occurrence {successor_id} could not be re-read")
            return None

        self.schedule_next_occurrence(successor)
        return successor_id
