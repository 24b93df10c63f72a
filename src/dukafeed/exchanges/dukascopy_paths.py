"""
Address generation for the Dukascopy hourly tick archive.

Every hour of ticks for a symbol lives in its own file::

    EURUSD/2018/06/05/05h_ticks.bi5

Months in the path are zero-based (``06`` is July), days and hours are not.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from itertools import groupby

from dukafeed.core.exceptions import InvalidRangeError
from dukafeed.helpers.time_helper import Instant, format_instant, to_epoch_ms, to_utc

logger = logging.getLogger(__name__)

PATH_SUFFIX = "h_ticks.bi5"


def dukascopy_path(symbol: str, hour: datetime) -> str:
    """Archive path of the hour file containing *hour* (UTC)."""
    return (
        f"{symbol}/{hour.year:04d}/{hour.month - 1:02d}/"
        f"{hour.day:02d}/{hour.hour:02d}{PATH_SUFFIX}"
    )


def parse_path(path: str) -> tuple[str, int]:
    """
    Split an archive path into its symbol and the epoch millisecond at which
    the hour starts.

    Raises
    ------
    ValueError
        If *path* does not look like ``SYMBOL/YYYY/MM/DD/HHh_ticks.bi5``.
    """
    parts = path.strip("/").split("/")
    if len(parts) < 5 or not parts[-1].endswith(PATH_SUFFIX):
        raise ValueError(f"Not a Dukascopy tick path: {path}")
    symbol, year, month, day, hour_file = parts[-5:]
    hour = int(hour_file[: -len(PATH_SUFFIX)])
    start = datetime(int(year), int(month) + 1, int(day), hour, tzinfo=timezone.utc)
    return symbol, to_epoch_ms(start)


class DukascopyPathGenerator:
    """Maps (symbol, start, end) onto the hour files covering the window."""

    def generate_paths(self, symbol: str, start: Instant, end: Instant) -> list[str]:
        """
        One path per calendar hour overlapping the inclusive [start, end]
        window, in ascending order.

        Raises
        ------
        InvalidRangeError
            If *end* is not after *start*.
        """
        start_utc = to_utc(start)
        end_utc = to_utc(end)
        if end_utc <= start_utc:
            raise InvalidRangeError(
                f"End {format_instant(to_epoch_ms(end_utc))} must be after "
                f"{format_instant(to_epoch_ms(start_utc))}",
                symbol=symbol,
            )
        hour = start_utc.replace(minute=0, second=0, microsecond=0)
        paths = []
        while hour <= end_utc:
            paths.append(dukascopy_path(symbol, hour))
            hour += timedelta(hours=1)
        logger.debug(f"[{symbol}] Generated {len(paths)} paths")
        return paths

    def generate_paths_grouped_by_day(
        self, symbol: str, start: Instant, end: Instant
    ) -> list[list[str]]:
        """Same paths as :meth:`generate_paths`, bucketed per calendar day."""
        paths = self.generate_paths(symbol, start, end)
        grouped = [
            list(day_paths)
            for _, day_paths in groupby(paths, key=lambda p: p.rsplit("/", 1)[0])
        ]
        logger.debug(f"[{symbol}] Generated {len(grouped)} day groups")
        return grouped
