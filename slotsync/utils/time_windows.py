"""Wall-clock helpers for provider-local scheduling.

Weekly hours are stored as wall-clock times in the provider's timezone and
converted to UTC instants per calendar day, so DST shifts move the UTC
instants rather than the local hours.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def get_timezone(name: str | None) -> ZoneInfo:
    """Get a ZoneInfo timezone with UTC fallback."""
    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def is_valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def parse_hhmm(value: str | time) -> time:
    """Parse "HH:MM" into a time; time values pass through."""
    if isinstance(value, time):
        return value
    hours, minutes = value.strip().split(":", 1)
    return time(int(hours), int(minutes))


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def sunday_weekday(day: date) -> int:
    """Day of week with Sunday=0 ... Saturday=6."""
    return (day.weekday() + 1) % 7


def at_local(day: date, wall_time: time, tz: ZoneInfo) -> datetime:
    """UTC instant for a wall-clock time on a provider-local day."""
    return datetime.combine(day, wall_time, tzinfo=tz).astimezone(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_midnight(day: date, tz: ZoneInfo) -> datetime:
    return at_local(day, time(0, 0), tz)


def overlaps(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open interval overlap: touching endpoints do not overlap."""
    return a_start < b_end and b_start < a_end


def round_up_from(anchor: datetime, value: datetime, step_minutes: int) -> datetime:
    """Round ``value`` up to the next multiple of ``step_minutes`` counted from ``anchor``."""
    if value <= anchor:
        return anchor
    step = timedelta(minutes=step_minutes)
    elapsed = value - anchor
    steps = -(-elapsed // step)  # ceiling division on timedeltas
    return anchor + steps * step


def iter_days(start: date, end: date):
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)
