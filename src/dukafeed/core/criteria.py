"""Validated query windows.

A criteria object pins a symbol to an inclusive UTC window in epoch
milliseconds and exposes the calendar days it touches, which is how the bar
cache partitions its work.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from dukafeed.core.exceptions import InvalidRangeError
from dukafeed.core.models import Period
from dukafeed.helpers.time_helper import (
    MS_PER_DAY,
    Instant,
    floor_day,
    floor_day_ms,
    format_instant,
    from_epoch_ms,
    to_epoch_ms,
)


def assert_before_start(start_ms: int, end_ms: int) -> None:
    """Raise unless *start_ms* is not after *end_ms*."""
    if start_ms > end_ms:
        raise InvalidRangeError(
            f"Instant {format_instant(start_ms)} must be before {format_instant(end_ms)}"
        )


def round_start(period: Period, start_ms: int) -> int:
    return period.round(start_ms)


def round_end(period: Period, end_ms: int) -> int:
    """Last millisecond of the period containing *end_ms*."""
    return period.round(end_ms + period.duration_ms) - 1


class Criteria:
    """A symbol and an inclusive [start, end] window."""

    def __init__(self, symbol: str, start: Instant, end: Instant) -> None:
        start_ms = to_epoch_ms(start)
        end_ms = to_epoch_ms(end)
        assert_before_start(start_ms, end_ms)
        self.symbol = symbol
        self.start_ms = start_ms
        self.end_ms = end_ms

    @property
    def start(self) -> datetime:
        return from_epoch_ms(self.start_ms)

    @property
    def end(self) -> datetime:
        return from_epoch_ms(self.end_ms)

    @property
    def num_days(self) -> int:
        return (floor_day_ms(self.end_ms) - floor_day_ms(self.start_ms)) // MS_PER_DAY + 1

    def day_start_ms(self, index: int) -> int:
        return floor_day_ms(self.start_ms) + index * MS_PER_DAY

    def day_end_ms(self, index: int) -> int:
        return self.day_start_ms(index) + MS_PER_DAY - 1

    def day_start(self, index: int) -> datetime:
        return floor_day(self.start) + timedelta(days=index)

    def day_end(self, index: int) -> datetime:
        return from_epoch_ms(self.day_end_ms(index))

    def contains(self, ms: int) -> bool:
        return self.start_ms <= ms <= self.end_ms

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.symbol} "
            f"{format_instant(self.start_ms)} -> {format_instant(self.end_ms)})"
        )


class BarCriteria(Criteria):
    """Criteria widened outwards to whole periods of *period*."""

    def __init__(self, symbol: str, period: Period, start: Instant, end: Instant) -> None:
        super().__init__(symbol, start, end)
        self.period = period
        self.start_ms = round_start(period, self.start_ms)
        self.end_ms = round_end(period, self.end_ms)

    def __repr__(self) -> str:
        return (
            f"BarCriteria({self.symbol} {self.period.name} "
            f"{format_instant(self.start_ms)} -> {format_instant(self.end_ms)})"
        )
