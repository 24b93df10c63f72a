import io
import lzma
import struct

import pytest

from dukafeed.core.models import REALTIME_UUID, Bar, Period, StreamSource, Tick
from dukafeed.data.bar_cache import DirectBarNoCache
from dukafeed.data.tick_cache import TickCache
from dukafeed.helpers.time_helper import to_epoch_ms


def as_ms(when) -> int:
    return when if isinstance(when, int) else to_epoch_ms(when)


class FakeTickCache(TickCache):
    """In-memory archive; unknown paths are empty hours."""

    def __init__(self, files=None):
        super().__init__()
        self.files = dict(files or {})
        self.requested = []

    def stream(self, path):
        self._count("retrieve_count")
        self._count("miss_count")
        self.requested.append(path)
        return io.BytesIO(self.files.get(path, b""))

    def cache_stats(self):
        return f"FakeTickCache: {self.retrieve_count} retrieve(s)"

    def create_bar_cache(self, tick_search):
        return DirectBarNoCache(tick_search)


@pytest.fixture
def bi5():
    """Build a bi5 payload from (offset_ms, ask, bid, ask_volume, bid_volume) records."""

    def _bi5(records):
        raw = b"".join(struct.pack(">iiiff", *record) for record in records)
        return lzma.compress(raw, format=lzma.FORMAT_ALONE)

    return _bi5


@pytest.fixture
def make_tick():
    def _make_tick(
        when,
        bid=116_000,
        ask=None,
        symbol="EURUSD",
        stream_id=REALTIME_UUID,
        source=StreamSource.HISTORICAL,
        ask_volume=1.5,
        bid_volume=0.75,
    ):
        return Tick(
            millisecond_utc=as_ms(when),
            stream_id=stream_id,
            symbol=symbol,
            ask=bid + 10 if ask is None else ask,
            bid=bid,
            ask_volume=ask_volume,
            bid_volume=bid_volume,
            source=source,
        )

    return _make_tick


@pytest.fixture
def make_bar():
    def _make_bar(
        when,
        period=Period.M5,
        symbol="EURUSD",
        open=116_000,
        high=116_050,
        low=115_950,
        close=116_020,
        stream_id=REALTIME_UUID,
        source=StreamSource.HISTORICAL,
    ):
        return Bar(
            start_ms_utc=as_ms(when),
            stream_id=stream_id,
            period=period,
            symbol=symbol,
            open=open,
            high=high,
            low=low,
            close=close,
            source=source,
        )

    return _make_bar


@pytest.fixture
def fake_cache():
    return FakeTickCache
