"""Time helpers shared by the limiter, heuristics and cleanup."""

import math
import time
from datetime import datetime, timezone


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime read back from the ledger to aware UTC.

    SQLite drops tzinfo on the way out; rows are always written in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ms_to_seconds_ceil(milliseconds: int) -> int:
    """Convert a millisecond duration to whole seconds, rounding up."""
    return math.ceil(milliseconds / 1000)
