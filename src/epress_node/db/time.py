# src/epress_node/db/time.py
"""Time utilities for database models."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from sqlite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_unix(value: datetime) -> int:
    """Return whole seconds since the epoch for a stored timestamp."""
    return int(as_utc(value).timestamp())


def from_unix(seconds: int) -> datetime:
    """Return a UTC datetime for a unix timestamp."""
    return datetime.fromtimestamp(int(seconds), UTC)


def within_window(timestamp: int, window_seconds: int, now: int | None = None) -> bool:
    """Return True if ``timestamp`` lies within ``window_seconds`` of ``now``."""
    current = int(utcnow().timestamp()) if now is None else now
    return abs(current - int(timestamp)) <= window_seconds
