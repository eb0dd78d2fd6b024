"""Attempt clock helpers.

All comparisons are done on naive UTC datetimes: SQLite hands back naive values and
PostgreSQL hands back aware ones, so everything is normalized on the way in.
"""

import math
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware or naive datetime to naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def attempt_deadline(started_at: datetime, duration_minutes: int) -> datetime:
    """Authoritative end of an attempt: server start time plus the exam duration."""
    return as_naive_utc(started_at) + timedelta(minutes=duration_minutes)


def remaining_seconds(started_at: datetime, duration_minutes: int, now: datetime) -> int:
    """Whole seconds left before the deadline, never negative.

    ``now`` is always the server clock; client clocks are never consulted.
    """
    delta = (attempt_deadline(started_at, duration_minutes) - as_naive_utc(now)).total_seconds()
    return max(0, math.floor(delta))
