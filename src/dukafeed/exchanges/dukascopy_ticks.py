"""
Decoder for Dukascopy ``.bi5`` hour files.

A bi5 file is a whole-file LZMA ("alone" container) compression of fixed
20-byte big-endian records::

    int32  milliseconds since the start of the hour
    int32  ask  (price in points)
    int32  bid
    float  ask volume
    float  bid volume

A zero-length file is a valid hour with no ticks.
"""

from __future__ import annotations

import io
import logging
import lzma
import struct
from enum import Enum
from typing import BinaryIO, Callable, Iterable, Optional, Union

from dukafeed.core.exceptions import DecodeCorruptionError
from dukafeed.core.models import REALTIME_UUID, StreamSource, Tick
from dukafeed.core.streams import TradingStream, Visitor
from dukafeed.exchanges.dukascopy_paths import parse_path

logger = logging.getLogger(__name__)

_RECORD = struct.Struct(">iiiff")
RECORD_SIZE = _RECORD.size

ByteSource = Union[BinaryIO, Callable[[], BinaryIO]]


class CursorState(Enum):
    NOT_PEEKED = "not_peeked"
    PEEKED = "peeked"
    EXHAUSTED = "exhausted"


def encode_hour(ticks: Iterable[Tick], hour_start_ms: int) -> bytes:
    """Compress *ticks* into bi5 form relative to *hour_start_ms*."""
    records = b"".join(
        _RECORD.pack(
            tick.millisecond_utc - hour_start_ms,
            tick.ask,
            tick.bid,
            tick.ask_volume,
            tick.bid_volume,
        )
        for tick in ticks
    )
    return lzma.compress(records, format=lzma.FORMAT_ALONE)


class DukascopyTickStream(TradingStream[Tick]):
    """
    Lazily decodes one hour file into validated ticks.

    Parameters
    ----------
    path : str
        Archive path, used for the symbol and the hour's epoch start.
    source : file object or callable
        The compressed bytes, or a callable opening them on first read.
    visitor : callable, optional
        Called with every tick handed out by :meth:`next`.
    """

    def __init__(self, path: str, source: ByteSource, visitor: Optional[Visitor] = None) -> None:
        self.path = path
        self.symbol, self.hour_start_ms = parse_path(path)
        self._source = source
        self._visitor = visitor
        self._raw: Optional[BinaryIO] = None
        self._decompressed: Optional[BinaryIO] = None
        self._opened = False
        self._state = CursorState.NOT_PEEKED
        self._peeked: Optional[Tick] = None
        self._failure: Optional[Exception] = None

    def has_next(self) -> bool:
        if self._failure is not None:
            raise self._failure
        if self._state is CursorState.NOT_PEEKED:
            try:
                tick = self._read_tick()
            except Exception as exc:
                # a failed hour stays failed, it never reads as an empty one
                self._failure = exc
                self.close()
                raise
            if tick is None:
                self._state = CursorState.EXHAUSTED
            else:
                self._peeked = tick
                self._state = CursorState.PEEKED
        return self._state is CursorState.PEEKED

    def next(self) -> Tick:
        if not self.has_next():
            raise StopIteration
        tick, self._peeked = self._peeked, None
        self._state = CursorState.NOT_PEEKED
        if self._visitor is not None:
            self._visitor(tick)
        return tick

    def close(self) -> None:
        self._state = CursorState.EXHAUSTED
        self._peeked = None
        try:
            if self._decompressed is not None:
                self._decompressed.close()
        finally:
            self._decompressed = None
            if self._raw is not None:
                raw, self._raw = self._raw, None
                raw.close()

    def __repr__(self) -> str:
        return f"DukascopyTickStream({self.path})"

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def _open(self) -> None:
        self._raw = self._source() if callable(self._source) else self._source
        payload = self._raw.read()
        self._opened = True
        if payload:
            self._decompressed = lzma.LZMAFile(io.BytesIO(payload), format=lzma.FORMAT_ALONE)
        else:
            logger.debug(f"[{self.symbol}] {self.path} is empty")

    def _read_tick(self) -> Optional[Tick]:
        if not self._opened:
            self._open()
        if self._decompressed is None:
            return None
        try:
            record = self._decompressed.read(RECORD_SIZE)
        except (EOFError, lzma.LZMAError) as exc:
            raise DecodeCorruptionError(f"Corrupt LZMA payload in {self.path}", path=self.path) from exc
        if not record:
            return None
        if len(record) < RECORD_SIZE:
            raise DecodeCorruptionError(
                f"Short read of {len(record)} bytes, expected {RECORD_SIZE}", path=self.path
            )
        offset_ms, ask, bid, ask_volume, bid_volume = _RECORD.unpack(record)
        tick = Tick(
            millisecond_utc=self.hour_start_ms + offset_ms,
            stream_id=REALTIME_UUID,
            symbol=self.symbol,
            ask=ask,
            bid=bid,
            ask_volume=ask_volume,
            bid_volume=bid_volume,
            source=StreamSource.HISTORICAL,
        )
        return tick.validate()
