"""
Time helpers
All persisted timestamps are naive UTC.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as naive UTC, matching the stored column values."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
