"""Utility helpers."""

from .datetime_utils import (
    get_local_tz,
    get_local_now,
    get_local_today,
    to_aware_utc,
    isoformat_utc,
    elapsed_seconds,
)

__all__ = [
    "get_local_tz",
    "get_local_now",
    "get_local_today",
    "to_aware_utc",
    "isoformat_utc",
    "elapsed_seconds",
]
