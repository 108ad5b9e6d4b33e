"""Timezone utilities.

Deadlines are stored in UTC. User-facing values use a fixed UTC+8 offset
(no daylight saving) labelled SGT.
"""

from datetime import date, datetime, time, timedelta, timezone

from taskflow.config import get_settings

_settings = get_settings()

DISPLAY_TZ = timezone(
    timedelta(hours=_settings.display_utc_offset_hours),
    _settings.display_timezone_label,
)


def ensure_aware(value: datetime) -> datetime:
    """Attach UTC to naive datetimes.

    Some drivers (SQLite) return naive values for timezone-aware columns;
    every stored value is UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_datetime(
    value: datetime | date | str | None,
    naive_tz: timezone = timezone.utc,
) -> datetime | None:
    """Parse a datetime, date or ISO 8601 string into an aware datetime.

    Args:
        value: Value to parse. Dates become midnight.
        naive_tz: Zone assumed when the value carries no offset.

    Returns:
        Aware datetime, or None if the value is empty or unparseable
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=naive_tz)
    return parsed


def to_utc(value: datetime) -> datetime:
    return ensure_aware(value).astimezone(timezone.utc)


def to_sgt_string(value: datetime | date | str | None) -> str | None:
    """Normalize user input to an ISO string with the display offset.

    Values without an offset are taken as display-zone wall time, which is
    what a browser datetime-local input sends.

    Example:
        to_sgt_string("2025-10-30T07:30:00Z") -> "2025-10-30T15:30:00+08:00"
    """
    parsed = parse_datetime(value, naive_tz=DISPLAY_TZ)
    if parsed is None:
        return None
    return parsed.astimezone(DISPLAY_TZ).isoformat(timespec="seconds")


def format_sgt(value: datetime | str | None) -> str | None:
    """Format a stored value for display, e.g. "Oct 30, 2025 03:30 PM (SGT)"."""
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    local = parsed.astimezone(DISPLAY_TZ)
    return (
        f"{local:%b} {local.day}, {local:%Y %I:%M %p} "
        f"({_settings.display_timezone_label})"
    )
