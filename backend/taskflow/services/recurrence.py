"""Next-due-date calculation for recurring tasks."""

import calendar
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from taskflow.models.project import TaskStatus
from taskflow.utils.timezone import DISPLAY_TZ, ensure_aware, parse_datetime

DAILY = 1
WEEKLY = 7
MONTHLY = 30


def add_one_month(value: datetime) -> datetime:
    """Same day next month, clamped to the target month's last day.

    Jan 31 -> Feb 28 (Feb 29 in leap years); Dec rolls into January.
    """
    if value.month == 12:
        year, month = value.year + 1, 1
    else:
        year, month = value.year, value.month + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def next_deadline(deadline: datetime, interval: int) -> datetime:
    """Deadline following ``deadline`` for a positive interval in days.

    30 means one calendar month, stepped on the display-zone calendar date
    so a deadline shown as Jan 31 lands on the last day of February. Every
    other value, including 1 and 7, adds exactly that many days.
    """
    if interval == MONTHLY:
        deadline = ensure_aware(deadline)
        local = add_one_month(deadline.astimezone(DISPLAY_TZ))
        return local.astimezone(deadline.tzinfo)
    return deadline + timedelta(days=interval)


def calculate_next_due_date(
    task: Mapping[str, Any], now: datetime | None = None
) -> Mapping[str, Any]:
    """Return the task as it would look for its next occurrence.

    Non-recurring tasks (interval 0) and tasks without a deadline come back
    as the very same object. Otherwise a new dict is returned with the next
    ``deadline`` and a recomputed ``is_overdue``; the input is never touched.
    The next deadline is based on the previous deadline, not on when the
    task was completed.
    """
    interval = task.get("recurrence_interval") or 0
    deadline = parse_datetime(task.get("deadline"))
    if interval <= 0 or deadline is None:
        return task

    now = now or datetime.now(timezone.utc)
    next_due = next_deadline(deadline, interval)

    updated = dict(task)
    updated["deadline"] = next_due
    updated["is_overdue"] = (
        next_due < now and task.get("status") != TaskStatus.COMPLETED.value
    )
    return updated
