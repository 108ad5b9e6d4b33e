"""iCalendar (RFC 5545) export of tasks as all-day events."""

from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from taskflow.models.project import TaskStatus
from taskflow.utils.timezone import DISPLAY_TZ, parse_datetime

PRODID = "-//Taskflow//NONSGML Taskflow Tasks 1.0//EN"
DEFAULT_CALENDAR_NAME = "Taskflow Tasks"
MAX_LINE_OCTETS = 75
LIST_SEPARATOR = "\\, "

_STATUS_MAP = {
    TaskStatus.COMPLETED.value: "CONFIRMED",
    TaskStatus.IN_PROGRESS.value: "CONFIRMED",
    TaskStatus.BLOCKED.value: "CANCELLED",
}

_FIXED_RULES = {
    1: ("DAILY", 1),
    7: ("WEEKLY", 1),
    14: ("WEEKLY", 2),
    30: ("MONTHLY", 1),
}


def escape_text(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def fold_line(line: str) -> str:
    """Fold a content line so no physical line exceeds 75 octets.

    Continuation lines start with a single space. Multi-byte characters are
    never split.
    """
    if len(line.encode("utf-8")) <= MAX_LINE_OCTETS:
        return line

    parts = []
    current = ""
    current_size = 0
    limit = MAX_LINE_OCTETS
    for char in line:
        size = len(char.encode("utf-8"))
        if current_size + size > limit:
            parts.append(current)
            current = ""
            current_size = 0
            # Leading space of the continuation line counts
            limit = MAX_LINE_OCTETS - 1
        current += char
        current_size += size
    parts.append(current)
    return "\r\n ".join(parts)


def _date_value(value: datetime) -> str:
    return value.astimezone(DISPLAY_TZ).strftime("%Y%m%d")


def recurrence_rule(interval: int, until: datetime) -> str | None:
    """RRULE for a recurrence interval in days, ending at ``until``."""
    if interval <= 0:
        return None
    if interval in _FIXED_RULES:
        freq, count = _FIXED_RULES[interval]
    elif interval % 7 == 0:
        freq, count = "WEEKLY", interval // 7
    elif interval % 30 == 0:
        freq, count = "MONTHLY", interval // 30
    else:
        freq, count = "DAILY", interval

    rule = f"RRULE:FREQ={freq}"
    if count > 1:
        rule += f";INTERVAL={count}"
    return f"{rule};UNTIL={_date_value(until)}"


def _describe(task: Mapping[str, Any]) -> str:
    parts = []
    if task.get("description"):
        parts.append(escape_text(task["description"]))
    parts.append(f"Status: {escape_text(task.get('status') or '')}")
    parts.append(f"Priority: {task.get('priority')}")
    project = task.get("project")
    if project and project.get("name"):
        parts.append(f"Project: {escape_text(project['name'])}")
    assignees = task.get("assignees") or []
    if assignees:
        names = [
            escape_text(f"{a['user_info']['first_name']} {a['user_info']['last_name']}")
            for a in assignees
        ]
        parts.append("Assignees: " + LIST_SEPARATOR.join(names))
    tags = task.get("tags") or []
    if tags:
        parts.append("Tags: " + LIST_SEPARATOR.join(escape_text(t) for t in tags))
    return "\\n".join(parts)


def _event_lines(task: Mapping[str, Any], stamp: str) -> list[str]:
    deadline = parse_datetime(task.get("deadline"))
    interval = task.get("recurrence_interval") or 0
    recurrence_date = parse_datetime(task.get("recurrence_date"))

    start = recurrence_date if interval > 0 and recurrence_date is not None else deadline
    end = start + timedelta(days=1)

    lines = [
        "BEGIN:VEVENT",
        f"UID:task-{task['id']}@taskflow",
        f"DTSTAMP:{stamp}",
        "SEQUENCE:0",
        f"DTSTART;VALUE=DATE:{_date_value(start)}",
        f"DTEND;VALUE=DATE:{_date_value(end)}",
        f"SUMMARY:{escape_text(task.get('title') or '')}",
        f"DESCRIPTION:{_describe(task)}",
        f"STATUS:{_STATUS_MAP.get(task.get('status'), 'TENTATIVE')}",
        f"PRIORITY:{10 - int(task.get('priority') or 5)}",
    ]
    rule = recurrence_rule(interval, deadline)
    if rule:
        lines.append(rule)
    tags = task.get("tags") or []
    if tags:
        lines.append(f"CATEGORIES:{','.join(escape_text(t) for t in tags)}")
    lines.append("END:VEVENT")
    return lines


def generate_ical(
    tasks: Iterable[Mapping[str, Any]],
    calendar_name: str = DEFAULT_CALENDAR_NAME,
    now: datetime | None = None,
) -> str:
    """Build an iCalendar document with one all-day event per task.

    Tasks are mapped task payloads. Tasks without a deadline are skipped.
    Recurring tasks start on their recurrence date and repeat until the
    deadline.
    """
    now = now or datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        f"X-WR-CALNAME:{escape_text(calendar_name)}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
    ]
    for task in tasks:
        if parse_datetime(task.get("deadline")) is None:
            continue
        lines.extend(_event_lines(task, stamp))
    lines.append("END:VCALENDAR")

    return "\r\n".join(fold_line(line) for line in lines) + "\r\n"
