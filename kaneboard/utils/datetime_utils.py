"""
Centralized datetime and timezone utilities.

All "now" and "today" lookups go through these functions so the ticket,
timer and health code agree on one clock. Timestamps are stored as naive
datetimes in the configured local timezone.
"""

from datetime import datetime, date
from typing import Optional
import pytz

from config import settings


def get_local_tz() -> pytz.BaseTzInfo:
    """Get the configured local timezone."""
    return pytz.timezone(settings.timezone)


def get_local_now() -> datetime:
    """Get current time in local timezone (naive)."""
    local_tz = get_local_tz()
    return datetime.now(local_tz).replace(tzinfo=None)


def get_local_today() -> date:
    """Get today's date in the local timezone."""
    return get_local_now().date()


def to_aware_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert naive local datetime to timezone-aware UTC.

    Used when serializing timestamps for API responses.
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        return dt.astimezone(pytz.UTC)

    local_tz = get_local_tz()
    return local_tz.localize(dt).astimezone(pytz.UTC)


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string in UTC, or None."""
    aware = to_aware_utc(dt)
    return aware.isoformat() if aware else None


def elapsed_seconds(start: datetime, end: datetime) -> int:
    """
    Whole seconds from start to end, never negative.

    Clock skew between writers can put `end` slightly before `start`;
    that clamps to zero.
    """
    return max(0, int((end - start).total_seconds()))
