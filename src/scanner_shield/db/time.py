# src/scanner_shield/db/time.py
"""Time utilities for database models."""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], float]


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def from_epoch(ts: float) -> datetime:
    """Convert epoch seconds into a timezone-aware UTC datetime."""
    return datetime.fromtimestamp(ts, UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_epoch(value: datetime) -> float:
    """Convert a datetime (naive values are treated as UTC) into epoch seconds."""
    return ensure_utc(value).timestamp()
