"""
Bar cache chain.

Mirrors the tick chain one level up: a whole calendar day of bars for one
symbol and period is stored as a single JSON array under::

    bars/{period}/{symbol}/{yyyy-MM-dd}.json

A miss falls through to the next tier and finally to ``DirectBarNoCache``,
which decodes the day's 24 hour files and aggregates them.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from dukafeed.core.criteria import BarCriteria
from dukafeed.core.exceptions import ValidationFailure
from dukafeed.core.models import Bar, Period
from dukafeed.core.streams import Visitor
from dukafeed.data.aggregation import TickToBarList
from dukafeed.data.storage import (
    read_if_present,
    s3_exists,
    s3_get_or_none,
    s3_key,
    write_atomically,
)
from dukafeed.exchanges.dukascopy_paths import parse_path
from dukafeed.helpers.time_helper import from_epoch_ms

_HOURS_PER_DAY = 24


def bar_cache_key(period: Period, symbol: str, day_ms: int) -> str:
    return f"bars/{period.name}/{symbol}/{from_epoch_ms(day_ms):%Y-%m-%d}.json"


def bars_to_json(bars: list[Bar]) -> bytes:
    return json.dumps([bar.to_dict() for bar in bars]).encode("utf-8")


def bars_from_json(data: bytes) -> list[Bar]:
    return [Bar.from_dict(item) for item in json.loads(data.decode("utf-8"))]


class BarCache(ABC):
    def __init__(self) -> None:
        self.retrieve_count = 0
        self.hit_count = 0
        self.miss_count = 0
        self._counter_lock = threading.Lock()

    @abstractmethod
    def get_one_day_of_ticks_as_bars(
        self,
        criteria: BarCriteria,
        day_paths: list[str],
        tick_visitor: Optional[Visitor] = None,
    ) -> list[Bar]:
        """
        Bars of ``criteria.period`` for the day covered by *day_paths*.
        *tick_visitor* sees the ticks only when they are actually decoded.
        """

    @abstractmethod
    def cache_stats(self) -> str:
        pass

    def _count(self, counter: str) -> None:
        with self._counter_lock:
            setattr(self, counter, getattr(self, counter) + 1)


class FallbackBarCache(BarCache):
    def __init__(self, fallback: BarCache, logger: Optional[logging.Logger] = None) -> None:
        super().__init__()
        self.fallback = fallback
        self.logger = logger or logging.getLogger(__name__)

    def get_one_day_of_ticks_as_bars(
        self,
        criteria: BarCriteria,
        day_paths: list[str],
        tick_visitor: Optional[Visitor] = None,
    ) -> list[Bar]:
        key = self._day_key(criteria, day_paths)
        bars = self._check_cache(key)
        self._count("miss_count" if bars is None else "hit_count")
        self._count("retrieve_count")
        if bars is None:
            self.logger.debug(f"{type(self).__name__} miss {key}")
            bars = self.fallback.get_one_day_of_ticks_as_bars(criteria, day_paths, tick_visitor)
            self._save_to_cache(key, bars)
        else:
            self.logger.debug(f"{type(self).__name__} hit {key}")
        return bars

    def cache_stats(self) -> str:
        retrieve = self.retrieve_count
        hit_rate = (self.hit_count / retrieve * 100.0) if retrieve else 0.0
        return (
            f"{type(self).__name__} {retrieve} {self.hit_count}h {self.miss_count}m "
            f"{hit_rate:.2f}% -> ({self.fallback.cache_stats()})"
        )

    @staticmethod
    def _day_key(criteria: BarCriteria, day_paths: list[str]) -> str:
        if not day_paths:
            raise ValueError(f"No paths supplied for {criteria}")
        _, hour_ms = parse_path(day_paths[0])
        return bar_cache_key(criteria.period, criteria.symbol, hour_ms)

    @abstractmethod
    def _check_cache(self, key: str) -> Optional[list[Bar]]:
        pass

    @abstractmethod
    def _save_to_cache(self, key: str, bars: list[Bar]) -> None:
        pass


class LocalBarCache(FallbackBarCache):
    def __init__(
        self,
        fallback: BarCache,
        cache_dir: str | Path,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(fallback, logger)
        self.cache_dir = Path(cache_dir).expanduser()
        self._lock = threading.Lock()

    def _check_cache(self, key: str) -> Optional[list[Bar]]:
        with self._lock:
            data = read_if_present(self.cache_dir / key)
        return None if data is None else bars_from_json(data)

    def _save_to_cache(self, key: str, bars: list[Bar]) -> None:
        target = self.cache_dir / key
        with self._lock:
            if not target.exists():
                write_atomically(target, bars_to_json(bars))


class S3BarCache(FallbackBarCache):
    def __init__(
        self,
        s3_client,
        bucket: str,
        fallback: BarCache,
        prefix: str = "",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(fallback, logger)
        self.s3 = s3_client
        self.bucket = bucket
        self.prefix = prefix
        self._s3_lock = threading.Lock()

    def _check_cache(self, key: str) -> Optional[list[Bar]]:
        data = s3_get_or_none(self.s3, self.bucket, s3_key(self.prefix, key))
        return None if data is None else bars_from_json(data)

    def _save_to_cache(self, key: str, bars: list[Bar]) -> None:
        full_key = s3_key(self.prefix, key)
        with self._s3_lock:
            if not s3_exists(self.s3, self.bucket, full_key):
                self.s3.put_object(
                    Bucket=self.bucket,
                    Key=full_key,
                    Body=bars_to_json(bars),
                    ContentType="application/json",
                )


class DirectBarNoCache(BarCache):
    """End of the bar chain: decode a day of ticks and aggregate them."""

    def __init__(self, tick_search) -> None:
        super().__init__()
        self.tick_search = tick_search

    def get_one_day_of_ticks_as_bars(
        self,
        criteria: BarCriteria,
        day_paths: list[str],
        tick_visitor: Optional[Visitor] = None,
    ) -> list[Bar]:
        if len(day_paths) > _HOURS_PER_DAY:
            raise ValidationFailure(f"Paths for Day of 1H Tick files is not 24! {len(day_paths)}")
        self._count("retrieve_count")
        self._count("miss_count")
        ticks = self.tick_search.search_paths(criteria.symbol, day_paths, tick_visitor)
        converter = TickToBarList(criteria.period, ticks)
        try:
            return converter.convert()
        finally:
            converter.close()

    def cache_stats(self) -> str:
        return f"DirectBarNoCache: {self.retrieve_count} retrieve(s)"
