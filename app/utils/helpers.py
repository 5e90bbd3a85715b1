"""Shared utility functions.

parse_datetime:   ISO date/datetime string → aware UTC datetime (None on bad input)
to_iso:           canonical UTC ISO string for stored phase dates
as_utc:           normalise naive (SQLite round-trip) datetimes to UTC
utcnow:           aware current time
"""
from datetime import date, datetime, time, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes; convert aware ones to UTC.

    SQLite stores DateTime(timezone=True) columns without an offset, so rows
    read back are naive. Everything written by this codebase is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value):
    """Parse an ISO date or datetime string to an aware UTC datetime.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (midnight UTC)
    - YYYY-MM-DDTHH:MM:SS[.ffffff][+HH:MM | Z]
    - date / datetime objects
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.combine(date.fromisoformat(text), time.min, tzinfo=timezone.utc)
    except (ValueError, TypeError):
        return None


def to_iso(value) -> str | None:
    """Serialise a datetime (or date string) to a canonical UTC ISO string."""
    parsed = parse_datetime(value)
    return parsed.isoformat() if parsed else None
