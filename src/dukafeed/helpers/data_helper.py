"""Helpers turning feed streams into pandas DataFrames.

This module provides:
- ticks_to_dataframe: one row per tick with a UTC ``time`` column.
- bars_to_dataframe: one row per bar with UTC ``start``/``end`` columns.

Both consume the iterable they are given; close the stream afterwards (or
pass it inside a ``with`` block).
"""

from __future__ import annotations

from typing import Iterable

import pandas as pd

from dukafeed.core.models import Bar, Tick

TICK_COLUMNS = ["time", "symbol", "ask", "bid", "ask_volume", "bid_volume", "source", "stream_id"]
BAR_COLUMNS = ["start", "end", "symbol", "period", "open", "high", "low", "close", "source", "stream_id"]


def ticks_to_dataframe(ticks: Iterable[Tick]) -> pd.DataFrame:
    rows = [
        {
            "time": tick.millisecond_utc,
            "symbol": tick.symbol,
            "ask": tick.ask,
            "bid": tick.bid,
            "ask_volume": tick.ask_volume,
            "bid_volume": tick.bid_volume,
            "source": tick.source.value,
            "stream_id": str(tick.stream_id),
        }
        for tick in ticks
    ]
    df = pd.DataFrame(rows, columns=TICK_COLUMNS)
    df["time"] = pd.to_datetime(df["time"], unit="ms", utc=True)
    return df


def bars_to_dataframe(bars: Iterable[Bar]) -> pd.DataFrame:
    rows = [
        {
            "start": bar.start_ms_utc,
            "end": bar.end_ms_utc,
            "symbol": bar.symbol,
            "period": bar.period.name,
            "open": bar.open,
            "high": bar.high,
            "low": bar.low,
            "close": bar.close,
            "source": bar.source.value,
            "stream_id": str(bar.stream_id),
        }
        for bar in bars
    ]
    df = pd.DataFrame(rows, columns=BAR_COLUMNS)
    for col in ("start", "end"):
        df[col] = pd.to_datetime(df[col], unit="ms", utc=True)
    return df
