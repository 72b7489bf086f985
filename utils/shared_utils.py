"""
Shared utility functions for services and repositories
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to timezone-aware UTC.

    SQLite hands back naive datetimes even for timezone-aware columns, so
    naive values are assumed to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Convert a unix timestamp (seconds) to a UTC datetime"""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)
