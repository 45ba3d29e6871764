"""
Time helpers.

All timestamps are stored as naive UTC datetimes truncated to millisecond
precision, which is what MongoDB keeps. Values that go through the store
therefore compare equal before and after a round-trip.
"""

import calendar
from datetime import datetime, timezone


def truncate_to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision and normalise to naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def utcnow() -> datetime:
    """Current UTC time, naive, millisecond precision."""
    return truncate_to_millis(datetime.now(timezone.utc))


def to_iso_millis(value: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    value = truncate_to_millis(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{value.microsecond // 1000:03d}Z"


def epoch_millis(value: datetime) -> int:
    value = truncate_to_millis(value)
    return calendar.timegm(value.utctimetuple()) * 1000 + value.microsecond // 1000


def epoch_seconds(value: datetime) -> int:
    return epoch_millis(value) // 1000


def from_epoch_seconds(seconds: int) -> datetime:
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc).replace(tzinfo=None)
