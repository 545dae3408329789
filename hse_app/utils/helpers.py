"""Shared utility functions.

utcnow:              the one place request handlers and jobs read the clock
as_utc:              normalise naive datetimes (SQLite drops tzinfo) to UTC
parse_datetime_input: due-date parsing for blueprints (raises ValueError)
"""
from datetime import date, datetime, time, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value):
    """Return *value* as an aware UTC datetime; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime_input(value):
    """Parse a due date, raising ValueError on bad input.

    Supports: ISO datetimes (with or without offset), YYYY-MM-DD and
    DD.MM.YYYY. A bare date means end of that day (23:59:59 UTC), so an
    item due "today" is not overdue until the day is over.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time(23, 59, 59), tzinfo=timezone.utc)
    text = str(value).strip()
    if len(text) > 10:
        try:
            return as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            pass
    for fmt in ("%Y-%m-%d", "%d.%m.%Y"):
        try:
            day = datetime.strptime(text, fmt).date()
        except ValueError:
            continue
        return datetime.combine(day, time(23, 59, 59), tzinfo=timezone.utc)
    raise ValueError("Invalid date format. Use ISO 8601, YYYY-MM-DD or DD.MM.YYYY.")
