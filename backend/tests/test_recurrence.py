"""
Tests for next-due-date calculation of recurring tasks.
"""
from datetime import datetime, timedelta, timezone

from taskflow.services.recurrence import add_one_month, calculate_next_due_date, next_deadline

UTC = timezone.utc


def _task(deadline, interval, status="Completed"):
    return {
        "id": 1,
        "title": "Weekly sync",
        "status": status,
        "deadline": deadline,
        "recurrence_interval": interval,
        "is_overdue": False,
    }


# ===================== MONTH ARITHMETIC =====================


def test_add_one_month_keeps_day():
    assert add_one_month(datetime(2025, 1, 10, 9, tzinfo=UTC)) == datetime(2025, 2, 10, 9, tzinfo=UTC)


def test_add_one_month_clamps_to_month_end():
    assert add_one_month(datetime(2025, 1, 31, tzinfo=UTC)) == datetime(2025, 2, 28, tzinfo=UTC)
    assert add_one_month(datetime(2024, 1, 31, tzinfo=UTC)) == datetime(2024, 2, 29, tzinfo=UTC)
    assert add_one_month(datetime(2025, 3, 31, tzinfo=UTC)) == datetime(2025, 4, 30, tzinfo=UTC)


def test_add_one_month_rolls_year():
    assert add_one_month(datetime(2025, 12, 15, tzinfo=UTC)) == datetime(2026, 1, 15, tzinfo=UTC)


def test_next_deadline_daily_and_weekly():
    base = datetime(2025, 1, 10, 9, 30, tzinfo=UTC)
    assert next_deadline(base, 1) == base + timedelta(days=1)
    assert next_deadline(base, 7) == base + timedelta(days=7)


def test_next_deadline_other_interval_adds_days():
    base = datetime(2025, 1, 10, tzinfo=UTC)
    assert next_deadline(base, 5) == datetime(2025, 1, 15, tzinfo=UTC)


# ===================== CALCULATE NEXT DUE DATE =====================


def test_non_recurring_task_returned_unchanged():
    task = _task(datetime(2025, 1, 10, tzinfo=UTC), 0)
    assert calculate_next_due_date(task) is task


def test_task_without_deadline_returned_unchanged():
    task = _task(None, 7)
    assert calculate_next_due_date(task) is task


def test_weekly_task_moves_one_week():
    task = _task(datetime(2025, 1, 10, 9, tzinfo=UTC), 7)
    result = calculate_next_due_date(task, now=datetime(2025, 1, 11, tzinfo=UTC))
    assert result["deadline"] == datetime(2025, 1, 17, 9, tzinfo=UTC)


def test_monthly_task_uses_calendar_month():
    task = _task("2025-01-31T00:00:00Z", 30)
    result = calculate_next_due_date(task, now=datetime(2025, 1, 1, tzinfo=UTC))
    assert result["deadline"] == datetime(2025, 2, 28, tzinfo=UTC)


def test_input_is_not_mutated():
    deadline = datetime(2025, 1, 10, tzinfo=UTC)
    task = _task(deadline, 1)
    result = calculate_next_due_date(task, now=datetime(2025, 1, 1, tzinfo=UTC))
    assert result is not task
    assert task["deadline"] == deadline
    assert result["title"] == task["title"]


def test_overdue_flag_recomputed():
    task = _task(datetime(2025, 1, 10, tzinfo=UTC), 1, status="In Progress")
    late = calculate_next_due_date(task, now=datetime(2025, 2, 1, tzinfo=UTC))
    assert late["is_overdue"] is True

    early = calculate_next_due_date(task, now=datetime(2025, 1, 5, tzinfo=UTC))
    assert early["is_overdue"] is False


def test_completed_task_is_never_overdue():
    task = _task(datetime(2025, 1, 10, tzinfo=UTC), 1, status="Completed")
    result = calculate_next_due_date(task, now=datetime(2026, 1, 1, tzinfo=UTC))
    assert result["is_overdue"] is False


def test_monthly_step_uses_display_calendar_date():
    sgt = timezone(timedelta(hours=8))
    # Jan 31 00:00 SGT is Jan 30 16:00 UTC
    jan_31 = datetime(2025, 1, 31, tzinfo=sgt).astimezone(UTC)
    assert next_deadline(jan_31, 30).astimezone(sgt) == datetime(2025, 2, 28, tzinfo=sgt)

    mar_1 = datetime(2025, 3, 1, tzinfo=sgt).astimezone(UTC)
    result = next_deadline(mar_1, 30)
    assert result.tzinfo == UTC
    assert result.astimezone(sgt) == datetime(2025, 4, 1, tzinfo=sgt)
