"""
Task Recurrence

Pure date arithmetic for repeating tasks: when is the next occurrence of a
series due, and has the series ended.

Stored due dates and times are wall-clock values in a fixed reference
timezone. They are combined as written, without DST adjustment.

Calendar units are added with ``dateutil.relativedelta``, which clamps to the
last day of the target month instead of rolling over:
- Jan 31 + 1 month = Feb 28 (Feb 29 in leap years)
- Mar 31 + 1 month = Apr 30
- Feb 29 + 1 year = Feb 28
"""

from datetime import UTC, date, datetime, time, tzinfo

from dateutil.relativedelta import relativedelta

from app.modules.tasks.models import RepeatFrequency
from app.modules.tasks.schemas import (
    CustomRepeat,
    EndAfterOccurrences,
    EndOnDate,
    NoEndCondition,
    NoRepeat,
    TaskRead,
)


def combine_due(due_date: date | None, due_time: time, tz: tzinfo = UTC) -> datetime | None:
    """
    Combine a stored due date and time into an aware instant.

    Returns:
        The instant in ``tz``, or None if the task has no due date
    """
    if due_date is None:
        return None
    return datetime.combine(due_date, due_time.replace(tzinfo=None), tzinfo=tz)


def end_of_day(day: date, tz: tzinfo = UTC) -> datetime:
    """Last representable instant of ``day`` in ``tz``."""
    return datetime.combine(day, time.max, tzinfo=tz)


def frequency_delta(frequency: RepeatFrequency, interval: int) -> relativedelta:
    """Calendar offset of ``interval`` units of ``frequency``."""
    match frequency:
        case RepeatFrequency.DAYS:
            return relativedelta(days=interval)
        case RepeatFrequency.WEEKS:
            return relativedelta(weeks=interval)
        case RepeatFrequency.MONTHS:
            return relativedelta(months=interval)
        case RepeatFrequency.YEARS:
            return relativedelta(years=interval)
    raise ValueError(f"Unsupported repeat frequency: {frequency!r}")


def series_has_ended(rule: CustomRepeat, occurrence_count: int) -> bool:
    """True if an ``After`` end condition has used up its occurrences."""
    match rule.end_condition:
        case EndAfterOccurrences(count=count):
            return occurrence_count >= count
        case NoEndCondition() | EndOnDate():
            return False
    raise ValueError(f"Unsupported end condition: {rule.end_condition!r}")


def compute_next_occurrence(task: TaskRead, tz: tzinfo = UTC) -> datetime | None:
    """
    Compute when the occurrence after ``task`` is due.

    The next instant is the current task's own due instant (not "now") plus
    the rule's interval. Deterministic and free of I/O.

    Args:
        task: The current occurrence
        tz: Reference timezone of the stored due date/time

    Returns:
        The next due instant, or None when the series has ended or the task
        does not repeat
    """
    match task.repeat_config:
        case NoRepeat():
            return None
        case CustomRepeat() as rule:
            pass
        case _:
            raise ValueError(f"Unsupported repeat config: {task.repeat_config!r}")

    if series_has_ended(rule, task.occurrence_count):
        return None

    base = combine_due(task.due_date, task.due_time, tz)
    if base is None:
        return None

    # Add on the naive wall clock so the time of day is preserved as written
    next_wall = base.replace(tzinfo=None) + frequency_delta(rule.frequency, rule.interval)
    next_due = next_wall.replace(tzinfo=tz)

    if isinstance(rule.end_condition, EndOnDate) and next_due > end_of_day(
        rule.end_condition.on_date, tz
    ):
        return None

    return next_due
