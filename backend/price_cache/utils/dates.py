"""Date and timestamp helpers shared by the cache and the orchestrator."""
from datetime import date, datetime, time, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_date(value: date | str) -> date:
    """Coerce a date or YYYY-MM-DD string to a date.

    Raises:
        ValueError: If the string is not a valid ISO calendar date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip())


def format_date(value: date) -> str:
    """Format as YYYY-MM-DD (the Amber query parameter format)."""
    return value.isoformat()


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def day_window(start: date, end: date) -> tuple[datetime, datetime]:
    """UTC instants bounding the inclusive calendar range [start, end].

    Returns:
        (start of start day, start of the day after end); callers test
        ``lower <= ts < upper`` so 23:59:59.999 on end is inside and
        00:00:00.001 the next day is outside.
    """
    lower = datetime.combine(start, time.min, tzinfo=timezone.utc)
    upper = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return lower, upper
