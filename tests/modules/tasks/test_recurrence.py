"""
Unit tests for task recurrence arithmetic.

These tests cover:
- Next due instant per frequency and interval
- Month-end and leap-day clamping
- End conditions (After, OnDate)
- Tasks that do not repeat
"""

from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from app.modules.tasks.models import RepeatFrequency
from app.modules.tasks.recurrence import (
    combine_due,
    compute_next_occurrence,
    end_of_day,
    series_has_ended,
)
from app.modules.tasks.schemas import (
    CustomRepeat,
    EndAfterOccurrences,
    EndOnDate,
    NoRepeat,
)


def monthly(**kwargs) -> CustomRepeat:
    return CustomRepeat(interval=1, frequency=RepeatFrequency.MONTHS, **kwargs)


class TestCombineDue:
    """Tests for combine_due."""

    def test_combines_date_and_time_in_timezone(self):
        """Date and time are read as wall clock in the given timezone."""
        lagos = ZoneInfo("Africa/Lagos")
        result = combine_due(date(2024, 3, 31), time(23, 59), lagos)
        assert result == datetime(2024, 3, 31, 23, 59, tzinfo=lagos)

    def test_no_due_date_returns_none(self):
        """A task without a due date has no due instant."""
        assert combine_due(None, time(23, 59)) is None

    def test_end_of_day_is_last_instant(self):
        """end_of_day is later than any minute of the same day."""
        assert end_of_day(date(2024, 4, 30)) > datetime(2024, 4, 30, 23, 59, 59, tzinfo=UTC)
        assert end_of_day(date(2024, 4, 30)) < datetime(2024, 5, 1, tzinfo=UTC)


class TestComputeNextOccurrence:
    """Tests for compute_next_occurrence."""

    def test_non_repeating_task_has_no_next(self, make_task):
        """A task whose rule is not Custom never has a next occurrence."""
        task = make_task(repeat_config=NoRepeat())
        assert compute_next_occurrence(task) is None

    def test_month_end_clamps_to_shorter_month(self, make_task):
        """Mar 31 23:59 + 1 month is Apr 30 23:59."""
        task = make_task(due_date=date(2024, 3, 31), due_time=time(23, 59))
        assert compute_next_occurrence(task) == datetime(2024, 4, 30, 23, 59, tzinfo=UTC)

    @pytest.mark.parametrize(
        ("year", "expected"),
        [
            (2024, date(2024, 2, 29)),
            (2023, date(2023, 2, 28)),
        ],
    )
    def test_january_31_monthly_clamps_to_february(self, make_task, year, expected):
        """Jan 31 + 1 month lands on the last day of February."""
        task = make_task(due_date=date(year, 1, 31), due_time=time(9, 0))
        assert compute_next_occurrence(task) == datetime.combine(expected, time(9, 0), tzinfo=UTC)

    def test_leap_day_yearly_clamps_to_february_28(self, make_task):
        """Feb 29 + 1 year is Feb 28."""
        task = make_task(
            due_date=date(2024, 2, 29),
            repeat_config=CustomRepeat(interval=1, frequency=RepeatFrequency.YEARS),
        )
        assert compute_next_occurrence(task).date() == date(2025, 2, 28)

    @pytest.mark.parametrize(
        ("frequency", "interval", "expected"),
        [
            (RepeatFrequency.DAYS, 1, date(2024, 4, 1)),
            (RepeatFrequency.DAYS, 10, date(2024, 4, 10)),
            (RepeatFrequency.WEEKS, 2, date(2024, 4, 14)),
            (RepeatFrequency.MONTHS, 3, date(2024, 6, 30)),
            (RepeatFrequency.YEARS, 1, date(2025, 3, 31)),
        ],
    )
    def test_frequencies_and_intervals(self, make_task, frequency, interval, expected):
        """Each frequency advances by interval units, keeping the time of day."""
        task = make_task(
            due_date=date(2024, 3, 31),
            due_time=time(7, 30),
            repeat_config=CustomRepeat(interval=interval, frequency=frequency),
        )
        assert compute_next_occurrence(task) == datetime.combine(expected, time(7, 30), tzinfo=UTC)

    def test_keeps_wall_clock_time_in_reference_timezone(self, make_task):
        """Wall-clock time is preserved across a DST change."""
        berlin = ZoneInfo("Europe/Berlin")
        task = make_task(
            due_date=date(2024, 3, 30),
            due_time=time(8, 0),
            repeat_config=CustomRepeat(interval=1, frequency=RepeatFrequency.DAYS),
        )

        result = compute_next_occurrence(task, berlin)

        assert result == datetime(2024, 3, 31, 8, 0, tzinfo=berlin)

    def test_is_deterministic(self, make_task):
        """Repeated calls on the same task return the same instant."""
        task = make_task()
        assert compute_next_occurrence(task) == compute_next_occurrence(task)

    def test_no_due_date_has_no_next(self, make_task):
        """A repeating task without a due date cannot advance."""
        task = make_task(due_date=None)
        assert compute_next_occurrence(task) is None


class TestEndConditions:
    """Tests for the After and OnDate end conditions."""

    @pytest.mark.parametrize("occurrence_count", [0, 1, 2])
    def test_after_allows_remaining_occurrences(self, make_task, occurrence_count):
        """After(3) keeps generating while fewer than 3 successors exist."""
        task = make_task(
            repeat_config=monthly(end_condition=EndAfterOccurrences(count=3)),
            occurrence_count=occurrence_count,
        )
        assert compute_next_occurrence(task) is not None

    def test_after_stops_once_count_reached(self, make_task):
        """After(3) stops on the occurrence with count 3."""
        task = make_task(
            repeat_config=monthly(end_condition=EndAfterOccurrences(count=3)),
            occurrence_count=3,
        )
        assert compute_next_occurrence(task) is None

    def test_after_generates_exactly_count_successors(self, make_task):
        """Walking the series from its first task yields exactly 3 successors."""
        rule = monthly(end_condition=EndAfterOccurrences(count=3))
        task = make_task(repeat_config=rule, occurrence_count=0)

        generated = []
        while (next_due := compute_next_occurrence(task)) is not None:
            generated.append(next_due.date())
            task = task.model_copy(
                update={
                    "due_date": next_due.date(),
                    "due_time": next_due.time(),
                    "occurrence_count": task.occurrence_count + 1,
                }
            )

        assert generated == [date(2024, 4, 30), date(2024, 5, 30), date(2024, 6, 30)]

    def test_on_date_allows_occurrence_on_end_date(self, make_task):
        """An occurrence due on the end date itself, even at 23:59, is generated."""
        task = make_task(repeat_config=monthly(end_condition=EndOnDate(on_date=date(2024, 4, 30))))
        assert compute_next_occurrence(task) == datetime(2024, 4, 30, 23, 59, tzinfo=UTC)

    def test_on_date_stops_after_end_date(self, make_task):
        """An occurrence due after the end date is not generated."""
        task = make_task(repeat_config=monthly(end_condition=EndOnDate(on_date=date(2024, 4, 29))))
        assert compute_next_occurrence(task) is None

    def test_series_has_ended_ignores_open_ended_rules(self):
        """Rules without an After condition never end by count."""
        assert series_has_ended(monthly(), 1000) is False
        ended_by_date = monthly(end_condition=EndOnDate(on_date=date(2020, 1, 1)))
        assert series_has_ended(ended_by_date, 5) is False
