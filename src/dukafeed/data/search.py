"""
Symbol / time-range queries over the Dukascopy archive.

``DukascopySearch`` is the entry point.  It owns a tick search (hour files
through the tick cache chain and the bi5 decoder) and a bar search (one day
of bars at a time through the bar cache chain).  Every query returns a lazy
``TradingStream``; nothing is fetched until the caller pulls.

Usage::

    search = DukascopySearch(tick_cache)
    with search.aggregate_from_ticks("EURUSD", Period.M5, start, end) as bars:
        for bar in bars:
            ...
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Iterator, Optional

from dukafeed.core.criteria import BarCriteria, Criteria
from dukafeed.core.exceptions import InvalidRangeError, ValidationFailure
from dukafeed.core.models import Bar, Period, Tick
from dukafeed.core.streams import (
    BackwardsSearchStream,
    ForwardSearchStream,
    TradingStream,
    Visitor,
    combine,
    map_stream,
    stream_from,
)
from dukafeed.data.bar_cache import BarCache
from dukafeed.data.tick_cache import TickCache
from dukafeed.exchanges.dukascopy_paths import DukascopyPathGenerator
from dukafeed.exchanges.dukascopy_ticks import DukascopyTickStream
from dukafeed.helpers.time_helper import Instant, format_instant, from_epoch_ms, to_epoch_ms

DEFAULT_BEGINNING_OF_TIME = "2004-01-01T00:00:00Z"


def _visiting(visitor: Visitor) -> Callable:
    def visit(item):
        visitor(item)
        return item

    return visit


# ---------------------------------------------------------------------------
# Search API
# ---------------------------------------------------------------------------
class TradingSearch(ABC):
    """
    Query API handed to downstream consumers.

    The count based bar queries are built on :meth:`aggregate_from_ticks` by
    widening a window until enough bars are found.
    """

    @property
    @abstractmethod
    def beginning_of_time_ms(self) -> int:
        pass

    @abstractmethod
    def search(
        self,
        symbol: str,
        start: Instant,
        end: Instant,
        tick_visitor: Optional[Visitor] = None,
    ) -> TradingStream[Tick]:
        pass

    @abstractmethod
    def aggregate_from_ticks(
        self,
        symbol: str,
        period: Period,
        start: Instant,
        end: Instant,
        bar_visitor: Optional[Visitor] = None,
        tick_visitor: Optional[Visitor] = None,
    ) -> TradingStream[Bar]:
        pass

    def end_of_time_ms(self) -> int:
        """Upper bound for forward searches; now, unless overridden."""
        return to_epoch_ms(datetime.now(timezone.utc))

    @property
    def beginning_of_time(self) -> datetime:
        return from_epoch_ms(self.beginning_of_time_ms)

    def aggregate_bars_before(
        self,
        symbol: str,
        period: Period,
        count: int,
        end: Instant,
        bar_visitor: Optional[Visitor] = None,
        tick_visitor: Optional[Visitor] = None,
    ) -> TradingStream[Bar]:
        """
        The *count* bars immediately before *end*, oldest first.  Fewer are
        returned only when the beginning of time is reached.
        """
        end_ms = to_epoch_ms(end)
        if end_ms <= self.beginning_of_time_ms:
            raise InvalidRangeError(
                f"End {format_instant(end_ms)} is before beginning of time "
                f"{format_instant(self.beginning_of_time_ms)}",
                symbol=symbol,
            )
        return BackwardsSearchStream(
            max_count=count,
            end_ms=end_ms,
            window_ms=period.duration_ms * count,
            floor_ms=self.beginning_of_time_ms,
            search=self._window_search(symbol, period, tick_visitor),
            visitor=bar_visitor,
        )

    def aggregate_bars_after(
        self,
        symbol: str,
        period: Period,
        start: Instant,
        count: int,
        bar_visitor: Optional[Visitor] = None,
        tick_visitor: Optional[Visitor] = None,
    ) -> TradingStream[Bar]:
        """The first *count* bars from *start* onwards, oldest first."""
        start_ms = period.round(to_epoch_ms(start))
        return ForwardSearchStream(
            max_count=count,
            start_ms=start_ms,
            window_ms=period.duration_ms * count,
            ceiling_ms=self.end_of_time_ms(),
            search=self._window_search(symbol, period, tick_visitor),
            visitor=bar_visitor,
        )

    def _window_search(
        self, symbol: str, period: Period, tick_visitor: Optional[Visitor]
    ) -> Callable[[int, int], TradingStream[Bar]]:
        def search_window(start_ms: int, end_ms: int) -> TradingStream[Bar]:
            return self.aggregate_from_ticks(
                symbol,
                period,
                from_epoch_ms(start_ms),
                from_epoch_ms(end_ms),
                tick_visitor=tick_visitor,
            )

        return search_window


class BaseDukascopySearch:
    def __init__(self, beginning_of_time: Instant = DEFAULT_BEGINNING_OF_TIME) -> None:
        self.beginning_of_time_ms = to_epoch_ms(beginning_of_time)

    def assert_criteria_times(self, symbol: str, start_ms: int, end_ms: int) -> None:
        if start_ms > end_ms:
            raise InvalidRangeError(
                f"Instant {format_instant(start_ms)} must be before {format_instant(end_ms)}",
                symbol=symbol,
            )
        if start_ms < self.beginning_of_time_ms:
            raise InvalidRangeError(
                f"Start {format_instant(start_ms)} is before beginning of time "
                f"{format_instant(self.beginning_of_time_ms)}",
                symbol=symbol,
            )


# ---------------------------------------------------------------------------
# Ticks
# ---------------------------------------------------------------------------
class DukascopyTickSearch(BaseDukascopySearch):
    def __init__(
        self,
        cache: TickCache,
        path_generator: DukascopyPathGenerator,
        beginning_of_time: Instant = DEFAULT_BEGINNING_OF_TIME,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(beginning_of_time)
        self.cache = cache
        self.path_generator = path_generator
        self.logger = logger or logging.getLogger(__name__)

    def search(
        self,
        symbol: str,
        start: Instant,
        end: Instant,
        tick_visitor: Optional[Visitor] = None,
    ) -> TradingStream[Tick]:
        criteria = Criteria(symbol, start, end)
        self.assert_criteria_times(symbol, criteria.start_ms, criteria.end_ms)
        day_groups = self.path_generator.generate_paths_grouped_by_day(symbol, criteria.start, criteria.end)
        self.logger.info(
            f"[{symbol}] Tick stream {format_instant(criteria.start_ms)} -> "
            f"{format_instant(criteria.end_ms)} over {len(day_groups)} day(s)"
        )
        paths = [path for day in day_groups for path in day]
        return self.search_paths(
            symbol,
            paths,
            tick_visitor,
            predicate=lambda tick: criteria.contains(tick.millisecond_utc),
        )

    def search_paths(
        self,
        symbol: str,
        paths: list[str],
        tick_visitor: Optional[Visitor] = None,
        predicate: Optional[Callable[[Tick], bool]] = None,
    ) -> TradingStream[Tick]:
        """Decode *paths* in order through the cache chain."""
        self.logger.debug(f"[{symbol}] Streaming {len(paths)} hour file(s)")
        ticks = combine(self._hour_streams(paths), predicate)
        if tick_visitor is None:
            return ticks
        return map_stream(ticks, _visiting(tick_visitor))

    def _hour_streams(self, paths: list[str]) -> Iterator[DukascopyTickStream]:
        for path in paths:
            yield DukascopyTickStream(path, partial(self.cache.stream, path))


# ---------------------------------------------------------------------------
# Bars
# ---------------------------------------------------------------------------
class DukascopyBarSearch(BaseDukascopySearch):
    def __init__(
        self,
        cache: BarCache,
        path_generator: DukascopyPathGenerator,
        beginning_of_time: Instant = DEFAULT_BEGINNING_OF_TIME,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(beginning_of_time)
        self.cache = cache
        self.path_generator = path_generator
        self.logger = logger or logging.getLogger(__name__)

    def search_for_days_in(
        self,
        symbol: str,
        period: Period,
        start: Instant,
        end: Instant,
        bar_visitor: Optional[Visitor] = None,
        tick_visitor: Optional[Visitor] = None,
    ) -> TradingStream[Bar]:
        start_ms = to_epoch_ms(start)
        end_ms = to_epoch_ms(end)
        self.assert_criteria_times(symbol, start_ms, end_ms)
        criteria = BarCriteria(symbol, period, start, end)
        self.logger.info(f"[{symbol}] Bar stream {criteria!r} over {criteria.num_days} day(s)")

        def trim(bar: Bar) -> bool:
            return criteria.start_ms <= bar.start_ms_utc <= criteria.end_ms

        def visit_after_trim(bar: Bar) -> None:
            if bar_visitor is not None and trim(bar):
                bar_visitor(bar)

        days = self._day_streams(criteria, visit_after_trim, tick_visitor)
        return combine(days, trim)

    def _day_streams(
        self,
        criteria: BarCriteria,
        bar_visitor: Visitor,
        tick_visitor: Optional[Visitor],
    ) -> Iterator[TradingStream[Bar]]:
        max_bars = criteria.period.periods_in(Period.D1)
        for index in range(criteria.num_days):
            day_paths = self.path_generator.generate_paths(
                criteria.symbol, criteria.day_start(index), criteria.day_end(index)
            )
            bars = self.cache.get_one_day_of_ticks_as_bars(criteria, day_paths, tick_visitor)
            if len(bars) > max_bars:
                raise ValidationFailure(
                    f"Unexpected number of bars {len(bars)}",
                    symbol=criteria.symbol,
                    day=format_instant(criteria.day_start_ms(index)),
                )
            yield stream_from(bars, visitor=bar_visitor)


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------
class DukascopySearch(TradingSearch):
    """
    Tick and bar queries backed by one tick cache chain.

    Parameters
    ----------
    cache : TickCache
        Head of the tick chain, e.g. a LocalTickCache.
    path_generator : DukascopyPathGenerator, optional
    beginning_of_time : datetime | str
        Queries starting earlier are rejected.
    end_of_time : datetime | str, optional
        Upper bound for forward bar searches.  Defaults to now at call time.
    logger : logging.Logger, optional
    """

    def __init__(
        self,
        cache: TickCache,
        path_generator: Optional[DukascopyPathGenerator] = None,
        beginning_of_time: Instant = DEFAULT_BEGINNING_OF_TIME,
        end_of_time: Optional[Instant] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.cache = cache
        path_generator = path_generator or DukascopyPathGenerator()
        self.tick_search = DukascopyTickSearch(cache, path_generator, beginning_of_time, self.logger)
        self.bar_cache = cache.create_bar_cache(self.tick_search)
        self.bar_search = DukascopyBarSearch(self.bar_cache, path_generator, beginning_of_time, self.logger)
        self._end_of_time_ms = None if end_of_time is None else to_epoch_ms(end_of_time)

    @property
    def beginning_of_time_ms(self) -> int:
        return self.tick_search.beginning_of_time_ms

    def end_of_time_ms(self) -> int:
        if self._end_of_time_ms is not None:
            return self._end_of_time_ms
        return super().end_of_time_ms()

    def search(
        self,
        symbol: str,
        start: Instant,
        end: Instant,
        tick_visitor: Optional[Visitor] = None,
    ) -> TradingStream[Tick]:
        return self.tick_search.search(symbol, start, end, tick_visitor)

    def aggregate_from_ticks(
        self,
        symbol: str,
        period: Period,
        start: Instant,
        end: Instant,
        bar_visitor: Optional[Visitor] = None,
        tick_visitor: Optional[Visitor] = None,
    ) -> TradingStream[Bar]:
        return self.bar_search.search_for_days_in(symbol, period, start, end, bar_visitor, tick_visitor)

    def tick_cache_stats(self) -> str:
        return self.cache.cache_stats()

    def bar_cache_stats(self) -> str:
        return self.bar_cache.cache_stats()
