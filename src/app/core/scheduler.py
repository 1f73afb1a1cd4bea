"""
Timer Registry

One-shot, cancelable timers keyed by an identifier, backed by APScheduler's
AsyncIOScheduler. Each key holds at most one armed timer; arming a key that
already has one replaces it.

Design Principles:
- The registry is an explicitly constructed object, owned by whoever starts it
  (the FastAPI lifespan in production, the test in unit tests)
- Timers only fire for instants strictly in the future
- Delays longer than the configured horizon are not armed; the caller is
  expected to pick those up again on a later startup scan
- A fired timer is consumed exactly once, even if the same key is re-armed
  while its callback is still running
- Exceptions raised by a fired action are logged and never escape

Usage:
    registry = TimerRegistry(timezone="UTC")
    registry.start()

    async def on_fire(key: str) -> None:
        ...

    registry.arm("task-1", run_at, on_fire)
    registry.disarm("task-1")

    registry.shutdown()
"""

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from app.core.config import DEFAULT_MAX_TIMER_DELAY_SECONDS

logger = logging.getLogger(__name__)

TimerAction = Callable[[str], Coroutine[Any, Any, None]]
Clock = Callable[[], datetime]

JOB_ID_PREFIX = "timer"


class SchedulerConfig:
    """Configuration for the underlying APScheduler instance."""

    # Default timezone for job scheduling
    TIMEZONE = "UTC"

    # Job execution settings (each timer is a one-shot job with a unique id)
    JOB_COALESCE = True
    JOB_MAX_INSTANCES = 1
    JOB_MISFIRE_GRACE_TIME = None  # One-shot timers still fire when the loop is late

    JOB_DEFAULTS = {
        "coalesce": JOB_COALESCE,
        "max_instances": JOB_MAX_INSTANCES,
        "misfire_grace_time": JOB_MISFIRE_GRACE_TIME,
    }


def build_scheduler(timezone: str = SchedulerConfig.TIMEZONE) -> AsyncIOScheduler:
    """
    Create an AsyncIOScheduler configured for one-shot timers.

    APScheduler consumes the executor and job default mappings it is given,
    so each scheduler gets its own executor and a copy of the defaults.
    """
    return AsyncIOScheduler(
        timezone=timezone,
        executors={"default": AsyncIOExecutor()},
        job_defaults=dict(SchedulerConfig.JOB_DEFAULTS),
    )


@dataclass(frozen=True)
class TimerEntry:
    """An armed timer: the APScheduler job backing it and when it fires."""

    key: str
    job_id: str
    run_at: datetime


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _job_listener(event: JobExecutionEvent) -> None:
    """
    Listener for job execution events.

    Fired actions are already wrapped, so an error here means the wrapper
    itself failed.

    Args:
        event: The job execution event from APScheduler
    """
    if event.exception:
        logger.error(
            f"Timer job {event.job_id} failed with exception: {event.exception}",
            exc_info=event.exception,
        )
    else:
        logger.debug(f"Timer job {event.job_id} executed at {_utc_now().isoformat()}")


class TimerRegistry:
    """Process-wide map from key to an armed, cancelable delayed action."""

    def __init__(
        self,
        *,
        timezone: str = SchedulerConfig.TIMEZONE,
        max_delay: timedelta = timedelta(seconds=DEFAULT_MAX_TIMER_DELAY_SECONDS),
        clock: Clock = _utc_now,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self._max_delay = max_delay
        self._clock = clock
        self._entries: dict[str, TimerEntry] = {}
        self._scheduler = scheduler or build_scheduler(timezone)
        self._scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def max_delay(self) -> timedelta:
        return self._max_delay

    def start(self) -> None:
        """
        Start the underlying scheduler.

        Must be called from inside a running event loop.
        """
        if self._scheduler.running:
            logger.warning("Timer registry already running")
            return

        self._scheduler.start()
        logger.info("Timer registry started")

    def shutdown(self) -> None:
        """Cancel every armed timer and stop the underlying scheduler."""
        cancelled = self.disarm_all()

        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        logger.info(f"Timer registry stopped ({cancelled} pending timers cancelled)")

    # ------------------------------------------------------------------
    # Arm / disarm
    # ------------------------------------------------------------------

    def arm(self, key: str, run_at: datetime, action: TimerAction) -> bool:
        """
        Arm a timer that calls ``action(key)`` at ``run_at``.

        Any timer already armed for ``key`` is cancelled first, whether or not
        a new one ends up being armed.

        Args:
            key: Identifier the timer is registered under
            run_at: Timezone-aware instant to fire at
            action: Async callable invoked with the key

        Returns:
            True if a timer was armed. False if ``run_at`` is not strictly in
            the future or lies beyond the maximum delay.

        Raises:
            ValueError: If ``run_at`` is naive
        """
        if run_at.tzinfo is None:
            raise ValueError("run_at must be timezone-aware")

        self.disarm(key)

        delay = run_at - self._clock()
        if delay <= timedelta(0):
            logger.debug(f"Not arming timer for {key}: {run_at.isoformat()} is not in the future")
            return False

        if delay > self._max_delay:
            logger.info(
                f"Not arming timer for {key}: due {run_at.isoformat()} is beyond the "
                f"{int(self._max_delay.total_seconds())}s timer horizon, "
                "it will be picked up by a later startup scan"
            )
            return False

        job_id = f"{JOB_ID_PREFIX}:{key}:{uuid4().hex}"
        self._scheduler.add_job(
            self._fire,
            trigger=DateTrigger(run_date=run_at),
            args=[key, job_id, action],
            id=job_id,
            name=f"timer:{key}",
        )
        self._entries[key] = TimerEntry(key=key, job_id=job_id, run_at=run_at)

        logger.info(
            f"Armed timer for {key} at {run_at.isoformat()} "
            f"(in {int(delay.total_seconds())} seconds)"
        )
        return True

    def disarm(self, key: str) -> bool:
        """
        Cancel and forget the timer for ``key``.

        Returns:
            True if a timer was armed for the key, False otherwise
        """
        entry = self._entries.pop(key, None)
        if entry is None:
            return False

        try:
            self._scheduler.remove_job(entry.job_id)
        except JobLookupError:
            # Already fired; the callback is running or queued
            logger.debug(f"Timer job {entry.job_id} already left the scheduler")

        logger.info(f"Disarmed timer for {key}")
        return True

    def disarm_all(self) -> int:
        """Cancel every armed timer. Returns how many were cancelled."""
        keys = list(self._entries)
        for key in keys:
            self.disarm(key)
        return len(keys)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def is_armed(self, key: str) -> bool:
        return key in self._entries

    def armed_keys(self) -> list[str]:
        return list(self._entries)

    def next_fire_time(self, key: str) -> datetime | None:
        entry = self._entries.get(key)
        return entry.run_at if entry else None

    def describe(self) -> list[dict[str, Any]]:
        """Armed timers ordered by fire time, for debug endpoints."""
        return [
            {"key": entry.key, "run_at": entry.run_at.isoformat(), "job_id": entry.job_id}
            for entry in sorted(self._entries.values(), key=lambda e: e.run_at)
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def _fire(self, key: str, job_id: str, action: TimerAction) -> None:
        """Run a fired timer's action, then release its entry."""
        logger.info(f"Timer fired for {key}")
        try:
            await action(key)
        except Exception as e:
            logger.error(f"Timer action for {key} failed: {e}", exc_info=True)
        finally:
            self._release(key, job_id)

    def _release(self, key: str, job_id: str) -> None:
        """Drop the entry for ``key`` only if it still belongs to ``job_id``."""
        entry = self._entries.get(key)
        if entry is not None and entry.job_id == job_id:
            del self._entries[key]
