"""
Datetime utilities for LifeGraph services.

All timestamps in the identity graph are timezone-aware UTC datetimes and are
serialized as ISO-8601 strings in durable rows.
"""
from datetime import date, datetime, time, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def make_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware (UTC if naive).

    Args:
        dt: A datetime object that may or may not have timezone info

    Returns:
        The same datetime with UTC timezone if it was naive,
        or the original timezone-aware datetime, or None if input was None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime (None passes through)."""
    return dt.isoformat() if dt else None


def from_iso(value) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass a datetime through) as aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return make_aware(value)
    return make_aware(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def start_of_day(day: date) -> datetime:
    """Midnight UTC of a calendar day."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)
