"""
Tick to bar aggregation.

``BarTickStreamAggregator`` accumulates one OHLC bucket for one
(stream, symbol).  ``TickBarNotifyingAggregator`` keeps one bucket per
(stream, symbol), closes a bucket when a tick arrives past its end and hands
the finished bar to a notifier.  ``roll_up_bars`` merges small bars into a
larger period.

Prices are bids.  Ticks must reach an aggregator in time order per key: a tick
after the open bucket's end closes it and opens the next bucket, while a tick
before the open bucket's start is rejected with a ValidationFailure.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence
from uuid import UUID

from dukafeed.core.exceptions import ValidationFailure
from dukafeed.core.models import REALTIME_UUID, Bar, Period, StreamSource, Tick
from dukafeed.core.streams import CollectionStream, TradingStream, Visitor
from dukafeed.helpers.time_helper import format_instant

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Single bucket
# ---------------------------------------------------------------------------
class BarTickStreamAggregator:
    """OHLC accumulator for one bucket of one (stream, symbol)."""

    def __init__(self, stream_id: UUID, symbol: str, start_ms: int, period: Period) -> None:
        self.stream_id = stream_id
        self.symbol = symbol
        self.period = period
        self.start_ms = period.round(start_ms)
        self.end_ms = self.start_ms + period.duration_ms - 1
        self.source = StreamSource.LIVE
        self.open: Optional[int] = None
        self.high: Optional[int] = None
        self.low: Optional[int] = None
        self.close: Optional[int] = None
        self.tick_volume = 0
        self._lock = threading.Lock()

    def add(self, tick: Tick) -> None:
        with self._lock:
            self._check(tick)
            bid = tick.bid
            if self.open is None:
                self.open = bid
                self.high = bid
                self.low = bid
            else:
                self.high = max(self.high, bid)
                self.low = min(self.low, bid)
            self.close = bid
            self.tick_volume += 1
            self.source = StreamSource.aggregate(self.source, tick.source)

    def to_bar(self) -> Bar:
        with self._lock:
            bar = Bar(
                start_ms_utc=self.start_ms,
                stream_id=self.stream_id,
                period=self.period,
                symbol=self.symbol,
                open=self.open,
                high=self.high,
                low=self.low,
                close=self.close,
                source=self.source,
            )
        return bar.validate()

    def _check(self, tick: Tick) -> None:
        if tick.stream_id != self.stream_id:
            raise ValidationFailure(
                f"Tick stream {tick.stream_id} is not matching bar stream {self.stream_id}"
            )
        if tick.millisecond_utc > self.end_ms:
            raise ValidationFailure(
                f"Tick {format_instant(tick.millisecond_utc)} is past end of bar "
                f"{format_instant(self.end_ms)}"
            )
        if tick.millisecond_utc < self.start_ms:
            raise ValidationFailure(
                f"Tick {format_instant(tick.millisecond_utc)} is before start of bar "
                f"{format_instant(self.start_ms)}"
            )
        if tick.symbol != self.symbol:
            raise ValidationFailure(
                f"Tick symbol {tick.symbol} is not matching bar symbol {self.symbol}"
            )


# ---------------------------------------------------------------------------
# Keyed, notifying aggregation
# ---------------------------------------------------------------------------
class BarNotifier(ABC):
    @abstractmethod
    def notify(self, bar: Bar) -> None:
        pass

    def flush(self) -> None:
        pass


class CallbackBarNotifier(BarNotifier):
    def __init__(self, callback: Callable[[Bar], None]) -> None:
        self._callback = callback

    def notify(self, bar: Bar) -> None:
        self._callback(bar)


class TickBarNotifyingAggregator:
    """
    Aggregates ticks for any number of (stream, symbol) keys into bars of
    *period*, sending each bar to *notifier* once its bucket is finished.

    Different keys may be fed from different threads.
    """

    def __init__(self, notifier: BarNotifier, period: Period) -> None:
        self.notifier = notifier
        self.period = period
        self._aggregators: dict[str, BarTickStreamAggregator] = {}
        self._lock = threading.Lock()

    def load_start(self) -> None:
        logger.debug(f"Starting {self.period.name} bulk load")

    def add(self, tick: Tick) -> None:
        aggregator = self._fetch_and_send_previous(tick)
        aggregator.add(tick)

    def load_end(self) -> None:
        with self._lock:
            remaining = list(self._aggregators.values())
            self._aggregators.clear()
        for aggregator in remaining:
            logger.debug(f"Flushing open {self.period.name} bar for {aggregator.symbol}")
            self._send(aggregator.to_bar())
        self.notifier.flush()

    def _fetch_and_send_previous(self, tick: Tick) -> BarTickStreamAggregator:
        key = tick.partition_key
        time_index = tick.millisecond_utc // self.period.duration_ms
        finished = None
        with self._lock:
            aggregator = self._aggregators.get(key)
            if aggregator is None:
                aggregator = self._new_aggregator(tick, time_index)
                self._aggregators[key] = aggregator
            elif tick.millisecond_utc > aggregator.end_ms:
                finished = aggregator
                aggregator = self._new_aggregator(tick, time_index)
                self._aggregators[key] = aggregator
        if finished is not None:
            self._send(finished.to_bar())
        return aggregator

    def _new_aggregator(self, tick: Tick, time_index: int) -> BarTickStreamAggregator:
        start_ms = time_index * self.period.duration_ms
        logger.debug(
            f"[{tick.symbol}] New {self.period.name} aggregator {tick.stream_id} @ {format_instant(start_ms)}"
        )
        return BarTickStreamAggregator(tick.stream_id, tick.symbol, start_ms, self.period)

    def _send(self, bar: Bar) -> None:
        logger.debug(f"Sending bar {bar.partition_key} @ {format_instant(bar.start_ms_utc)}")
        self.notifier.notify(bar)


class TickToBarList:
    """Drains a tick stream into a list of bars held in memory."""

    def __init__(
        self,
        period: Period,
        ticks: TradingStream[Tick],
        visitor: Optional[Visitor] = None,
    ) -> None:
        self.period = period
        self.ticks = ticks
        self.visitor = visitor

    def convert(self) -> list[Bar]:
        bars: list[Bar] = []

        def collect(bar: Bar) -> None:
            bars.append(bar)
            if self.visitor is not None:
                self.visitor(bar)

        aggregator = TickBarNotifyingAggregator(CallbackBarNotifier(collect), self.period)
        aggregator.load_start()
        while self.ticks.has_next():
            aggregator.add(self.ticks.next())
        aggregator.load_end()
        return bars

    def close(self) -> None:
        self.ticks.close()


class TickToBarStream(TradingStream[Bar]):
    """Bar stream over a tick stream; the ticks are aggregated on first access."""

    def __init__(
        self,
        period: Period,
        ticks: TradingStream[Tick],
        visitor: Optional[Visitor] = None,
    ) -> None:
        self._delegate = TickToBarList(period, ticks, visitor)
        self._converted: Optional[CollectionStream[Bar]] = None

    def has_next(self) -> bool:
        return self._convert().has_next()

    def next(self) -> Bar:
        return self._convert().next()

    def close(self) -> None:
        self._delegate.close()

    def _convert(self) -> CollectionStream[Bar]:
        if self._converted is None:
            self._converted = CollectionStream(self._delegate.convert())
        return self._converted


# ---------------------------------------------------------------------------
# Bar roll-up
# ---------------------------------------------------------------------------
def roll_up_bars(bars: Sequence[Bar], target: Period) -> list[Bar]:
    """
    Merge bars of one smaller period into bars of *target*.

    Parameters
    ----------
    bars : sequence of Bar
        Same symbol, same period (strictly smaller than *target*), in strictly
        descending start time.
    target : Period
        Period of the bars produced.

    Returns
    -------
    list[Bar]
        Newest first, on the realtime stream.  Close comes from the newest bar
        in each bucket, open from the oldest.

    Raises
    ------
    ValidationFailure
        If any input constraint above is broken.
    """
    if not bars:
        return []
    _check_roll_up(bars, target)

    first = bars[0]
    result: list[Bar] = []
    bucket = _RollUpBucket(first, target)
    for bar in bars[1:]:
        if bucket.start_ms > bar.end_ms_utc:
            result.append(bucket.to_bar())
            bucket = _RollUpBucket(bar, target)
        else:
            bucket.merge_older(bar)
    result.append(bucket.to_bar())
    return result


def _check_roll_up(bars: Sequence[Bar], target: Period) -> None:
    first = bars[0]
    for bar in bars:
        if bar.symbol != first.symbol:
            raise ValidationFailure(
                f"BarAggregator does not support bars with different symbols.  First was {first.symbol}"
            )
        if bar.period >= target:
            raise ValidationFailure(
                f"BarAggregator does not support bars with larger periods {bar.period.name} "
                f"that the target {target.name}."
            )
        if bar.period != first.period:
            raise ValidationFailure(
                f"BarAggregator does not support bars with mixed periods.  First was {first.period.name}."
            )
    for newer, older in zip(bars, bars[1:]):
        if older.start_ms_utc >= newer.start_ms_utc:
            raise ValidationFailure("BarAggregator requires bars sorted in descending time")


class _RollUpBucket:
    def __init__(self, newest: Bar, target: Period) -> None:
        self.symbol = newest.symbol
        self.target = target
        self.start_ms = target.round(newest.start_ms_utc)
        self.open = newest.open
        self.high = newest.high
        self.low = newest.low
        self.close = newest.close
        self.source = newest.source

    def merge_older(self, bar: Bar) -> None:
        self.open = bar.open
        self.high = max(self.high, bar.high)
        self.low = min(self.low, bar.low)
        self.source = StreamSource.aggregate(self.source, bar.source)

    def to_bar(self) -> Bar:
        return Bar(
            start_ms_utc=self.start_ms,
            stream_id=REALTIME_UUID,
            period=self.target,
            symbol=self.symbol,
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
            source=self.source,
        ).validate()
