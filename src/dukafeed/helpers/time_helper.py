"""UTC time helpers.

All instants inside dukafeed are UTC.  Internally the feed works in epoch
milliseconds; the public API accepts aware or naive ``datetime`` objects (naive
values are taken to be UTC) and ISO-8601 strings such as
``"2018-07-05T05:00:00Z"``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Union

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

MS_PER_SECOND = 1_000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR

Instant = Union[datetime, str]


def to_utc(value: Instant) -> datetime:
    """Return *value* as a timezone-aware UTC datetime."""
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_ms(value: Instant) -> int:
    delta = to_utc(value) - EPOCH
    return delta.days * MS_PER_DAY + delta.seconds * MS_PER_SECOND + delta.microseconds // 1000


def from_epoch_ms(ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=ms)


def floor_day(value: Instant) -> datetime:
    """Midnight UTC of the day containing *value*."""
    return to_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)


def floor_day_ms(ms: int) -> int:
    return (ms // MS_PER_DAY) * MS_PER_DAY


def format_instant(ms: int) -> str:
    """ISO-8601 rendering used in log and error messages, e.g. 2018-07-05T05:00:00Z."""
    dt = from_epoch_ms(ms)
    text = dt.strftime("%Y-%m-%dT%H:%M:%S")
    if dt.microsecond:
        text += f".{dt.microsecond // 1000:03d}"
    return text + "Z"
