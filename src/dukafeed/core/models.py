"""Tick and bar models shared by the codec, the caches and the aggregators.

Ticks and bars are immutable once created.  Both sort by stream type first
(backtest before realtime), then symbol, then time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from dukafeed.core.exceptions import ValidationFailure
from dukafeed.helpers.time_helper import MS_PER_DAY, MS_PER_HOUR, MS_PER_MINUTE, from_epoch_ms

# The reserved stream id for realtime data.  Any other id is a backtest run.
REALTIME_UUID = UUID(int=0)

_MIN_SYMBOL_LENGTH = 6


class StreamType(Enum):
    BACKTEST = "Backtest"
    REALTIME = "Realtime"

    @classmethod
    def of(cls, stream_id: UUID) -> "StreamType":
        return cls.REALTIME if stream_id == REALTIME_UUID else cls.BACKTEST

    @property
    def rank(self) -> int:
        return 1 if self is StreamType.REALTIME else 0


class StreamSource(Enum):
    LIVE = "Live"
    HISTORICAL = "Historical"

    @staticmethod
    def aggregate(left: "StreamSource", right: "StreamSource") -> "StreamSource":
        """Historical data contaminates live data; anything else keeps *left*."""
        if left is StreamSource.LIVE and right is StreamSource.HISTORICAL:
            return StreamSource.HISTORICAL
        return left


class Period(Enum):
    """Fixed bar periods, valued by their duration in milliseconds."""

    M5 = 5 * MS_PER_MINUTE
    M10 = 10 * MS_PER_MINUTE
    M15 = 15 * MS_PER_MINUTE
    M30 = 30 * MS_PER_MINUTE
    H1 = MS_PER_HOUR
    H4 = 4 * MS_PER_HOUR
    D1 = MS_PER_DAY

    @property
    def duration_ms(self) -> int:
        return self.value

    def round(self, ms: int) -> int:
        """Floor an epoch millisecond to the start of its period."""
        return (ms // self.value) * self.value

    def periods_in(self, other: "Period") -> int:
        """How many whole periods of this size fit into *other*."""
        return max(other.value // self.value, 0)

    @classmethod
    def from_interval(cls, interval: str) -> "Period":
        """Map an interval string such as ``"5m"`` or ``"1h"`` to a Period."""
        try:
            return _INTERVALS[interval.strip().lower()]
        except KeyError:
            raise ValueError(f"Unsupported bar interval {interval!r}") from None

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, Period):
            return NotImplemented
        return self.value < other.value

    def __le__(self, other: Any) -> bool:
        if not isinstance(other, Period):
            return NotImplemented
        return self.value <= other.value

    def __gt__(self, other: Any) -> bool:
        if not isinstance(other, Period):
            return NotImplemented
        return self.value > other.value

    def __ge__(self, other: Any) -> bool:
        if not isinstance(other, Period):
            return NotImplemented
        return self.value >= other.value


_INTERVALS: dict[str, Period] = {
    "5m": Period.M5,
    "10m": Period.M10,
    "15m": Period.M15,
    "30m": Period.M30,
    "1h": Period.H1,
    "4h": Period.H4,
    "1d": Period.D1,
}


def _check_symbol(kind: str, symbol: Optional[str]) -> None:
    if not symbol or len(symbol) < _MIN_SYMBOL_LENGTH:
        raise ValidationFailure(
            f"{kind} symbol must be at least {_MIN_SYMBOL_LENGTH} characters", symbol=symbol
        )


def _check_non_negative(kind: str, **fields: Any) -> None:
    for name, value in fields.items():
        if value is None or value < 0:
            raise ValidationFailure(f"{kind} {name} must be non-negative, was {value}")


@dataclass(frozen=True)
class Tick:
    millisecond_utc: int
    stream_id: UUID
    symbol: str
    ask: int
    bid: int
    ask_volume: float
    bid_volume: float
    source: StreamSource = StreamSource.HISTORICAL

    @property
    def stream_type(self) -> StreamType:
        return StreamType.of(self.stream_id)

    @property
    def timestamp(self) -> datetime:
        return from_epoch_ms(self.millisecond_utc)

    @property
    def partition_key(self) -> str:
        return f"{self.stream_id}-{self.symbol}"

    @property
    def sort_key(self) -> tuple:
        return self.stream_type.rank, self.symbol, self.millisecond_utc

    def __lt__(self, other: "Tick") -> bool:
        return self.sort_key < other.sort_key

    def validate(self) -> "Tick":
        _check_symbol("Tick", self.symbol)
        if self.stream_id is None:
            raise ValidationFailure("Tick stream id is required", symbol=self.symbol)
        _check_non_negative(
            "Tick",
            millisecond_utc=self.millisecond_utc,
            ask=self.ask,
            bid=self.bid,
            ask_volume=self.ask_volume,
            bid_volume=self.bid_volume,
        )
        return self


@dataclass(frozen=True)
class Bar:
    start_ms_utc: int
    stream_id: UUID
    period: Period
    symbol: str
    open: int
    high: int
    low: int
    close: int
    source: StreamSource = StreamSource.HISTORICAL

    @property
    def end_ms_utc(self) -> int:
        return self.start_ms_utc + self.period.duration_ms - 1

    @property
    def start(self) -> datetime:
        return from_epoch_ms(self.start_ms_utc)

    @property
    def end(self) -> datetime:
        return from_epoch_ms(self.end_ms_utc)

    @property
    def stream_type(self) -> StreamType:
        return StreamType.of(self.stream_id)

    @property
    def partition_key(self) -> str:
        return f"{self.stream_id}-{self.symbol}-{self.period.name}"

    @property
    def sort_key(self) -> tuple:
        return self.stream_type.rank, self.symbol, self.start_ms_utc

    def __lt__(self, other: "Bar") -> bool:
        return self.sort_key < other.sort_key

    def within(self, other: "Bar") -> bool:
        """True when *other* is a same-stream, same-symbol bar of at least this
        period whose time span contains this bar."""
        return (
            self.stream_id == other.stream_id
            and self.symbol == other.symbol
            and other.period >= self.period
            and other.start_ms_utc <= self.start_ms_utc
            and other.end_ms_utc >= self.end_ms_utc
        )

    def surrounds(self, other: "Bar") -> bool:
        return other.within(self)

    def validate(self) -> "Bar":
        _check_symbol("Bar", self.symbol)
        if self.stream_id is None or self.period is None:
            raise ValidationFailure("Bar stream id and period are required", symbol=self.symbol)
        _check_non_negative(
            "Bar",
            start_ms_utc=self.start_ms_utc,
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
        )
        return self

    def to_dict(self) -> dict:
        return {
            "start_ms_utc": self.start_ms_utc,
            "stream_id": str(self.stream_id),
            "period": self.period.name,
            "symbol": self.symbol,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Bar":
        return cls(
            start_ms_utc=int(data["start_ms_utc"]),
            stream_id=UUID(data["stream_id"]),
            period=Period[data["period"]],
            symbol=data["symbol"],
            open=int(data["open"]),
            high=int(data["high"]),
            low=int(data["low"]),
            close=int(data["close"]),
            source=StreamSource(data["source"]),
        )
