"""
Lazy pull-based streams.

A ``TradingStream`` is a closable iterator with an explicit ``has_next``.
Everything the search layer returns is one of these, so callers can use::

    with search.search("EURUSD", start, end) as ticks:
        for tick in ticks:
            ...

and never need to know whether the stream is a single decoded hour file, a
concatenation of many, or a window-extension search.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Generic, Iterable, Iterator, Optional, TypeVar

T = TypeVar("T")
R = TypeVar("R")

Visitor = Callable[[T], None]
OnClose = Callable[[], None]

logger = logging.getLogger(__name__)

# Marks an empty lookahead slot; None is not used because it can never be
# told apart from a legitimately filtered value.
_EMPTY = object()


def _default_key(item):
    return item.sort_key


# ---------------------------------------------------------------------------
# Base stream
# ---------------------------------------------------------------------------
class TradingStream(ABC, Generic[T]):
    """Closable pull sequence.  ``next`` raises StopIteration once exhausted."""

    @abstractmethod
    def has_next(self) -> bool:
        pass

    @abstractmethod
    def next(self) -> T:
        pass

    def close(self) -> None:
        pass

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        return self.next()

    def __enter__(self) -> "TradingStream[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class CollectionStream(TradingStream[T]):
    """Stream over an in-memory sequence, optionally visiting each element."""

    def __init__(
        self,
        items: Iterable[T],
        visitor: Optional[Visitor] = None,
        on_close: Optional[OnClose] = None,
    ) -> None:
        self._items = list(items)
        self._index = 0
        self._visitor = visitor
        self._on_close = on_close

    def has_next(self) -> bool:
        return self._index < len(self._items)

    def next(self) -> T:
        if not self.has_next():
            raise StopIteration
        item = self._items[self._index]
        self._index += 1
        if self._visitor is not None:
            self._visitor(item)
        return item

    def close(self) -> None:
        if self._on_close is not None:
            self._on_close()


class StreamCombiner(TradingStream[T]):
    """
    Concatenates sub-streams in order.

    Sub-streams are pulled from *streams* only when needed, so a generator can
    open them lazily.  Exhausted sub-streams are closed immediately; a failure
    while closing one is logged and the walk carries on.  When *predicate* is
    given only matching elements are surfaced.

    Closing the combination closes the current sub-stream.  When *streams* is
    a list or tuple the sub-streams not reached yet are closed too; a
    generator is left alone, its sub-streams were never opened.
    """

    def __init__(
        self,
        streams: Iterable[TradingStream[T]],
        predicate: Optional[Callable[[T], bool]] = None,
    ) -> None:
        self._streams = iter(streams)
        self._close_remaining = isinstance(streams, (list, tuple))
        self._predicate = predicate
        self._current: Optional[TradingStream[T]] = None
        self._peeked = _EMPTY

    def has_next(self) -> bool:
        if self._peeked is not _EMPTY:
            return True
        if self._predicate is None:
            return self._advance()
        while self._advance():
            candidate = self._current.next()
            if self._predicate(candidate):
                self._peeked = candidate
                return True
        return False

    def next(self) -> T:
        if not self.has_next():
            raise StopIteration
        if self._peeked is not _EMPTY:
            item, self._peeked = self._peeked, _EMPTY
            return item
        return self._current.next()

    def close(self) -> None:
        try:
            if self._current is not None:
                current, self._current = self._current, None
                current.close()
        finally:
            if self._close_remaining:
                for stream in self._streams:
                    self._close_spent(stream)

    def _advance(self) -> bool:
        """Move to the first sub-stream with data, closing spent ones."""
        while self._current is None or not self._current.has_next():
            if self._current is not None:
                self._close_spent(self._current)
                self._current = None
            upcoming = next(self._streams, None)
            if upcoming is None:
                return False
            self._current = upcoming
        return True

    @staticmethod
    def _close_spent(stream: TradingStream) -> None:
        try:
            stream.close()
        except Exception as exc:
            logger.warning(f"Failed to close exhausted stream {stream!r}: {exc}")


class MappedStream(TradingStream[R]):
    """1:1 transform of another stream with an optional close hook."""

    def __init__(
        self,
        stream: TradingStream[T],
        transform: Callable[[T], R],
        on_close: Optional[OnClose] = None,
    ) -> None:
        self._stream = stream
        self._transform = transform
        self._on_close = on_close

    def has_next(self) -> bool:
        return self._stream.has_next()

    def next(self) -> R:
        if not self._stream.has_next():
            raise StopIteration
        return self._transform(self._stream.next())

    def close(self) -> None:
        try:
            if self._on_close is not None:
                self._on_close()
        except Exception as exc:
            logger.warning(f"On close hook failed, continuing to close stream: {exc}", exc_info=True)
        finally:
            self._stream.close()


# ---------------------------------------------------------------------------
# Window extension searches
# ---------------------------------------------------------------------------
WindowSearch = Callable[[int, int], TradingStream[T]]


class BackwardsSearchStream(TradingStream[T]):
    """
    Collects the last *max_count* elements before *end_ms*.

    Round ``i`` searches ``[end - window*(i+1), end - window*i - 1]``.  Rounds
    continue until enough distinct elements are gathered or the window reaches
    *floor_ms*, after which the collection is sorted ascending and trimmed to
    the most recent *max_count*.  The search runs on first access.

    Parameters
    ----------
    max_count : int
        Number of elements wanted.
    end_ms : int
        Exclusive upper bound of the search, epoch milliseconds.
    window_ms : int
        Width of one search round.
    floor_ms : int
        Beginning of time; no window starts before it.
    search : callable
        ``search(start_ms, end_ms)`` returning a stream for one window.
    visitor : callable, optional
        Called with each element as it is handed out.
    key : callable, optional
        Identity and ordering of an element (default ``item.sort_key``).
    """

    def __init__(
        self,
        max_count: int,
        end_ms: int,
        window_ms: int,
        floor_ms: int,
        search: WindowSearch,
        visitor: Optional[Visitor] = None,
        key: Callable[[T], object] = _default_key,
    ) -> None:
        if max_count < 1:
            raise ValueError(f"Count must be at least 1, was {max_count}")
        self._max_count = max_count
        self._end_ms = end_ms
        self._window_ms = window_ms
        self._floor_ms = floor_ms
        self._search = search
        self._visitor = visitor
        self._key = key
        self._delegate: Optional[CollectionStream[T]] = None

    def has_next(self) -> bool:
        return self._loaded().has_next()

    def next(self) -> T:
        return self._loaded().next()

    def close(self) -> None:
        self._delegate = CollectionStream(())

    def _loaded(self) -> CollectionStream[T]:
        if self._delegate is None:
            self._delegate = CollectionStream(self._collect(), visitor=self._visitor)
        return self._delegate

    def _collect(self) -> list[T]:
        collected: dict[object, T] = {}
        round_index = 0
        while len(collected) < self._max_count:
            window_end = self._end_ms - self._window_ms * round_index - 1
            window_start = self._end_ms - self._window_ms * (round_index + 1)
            at_floor = window_start <= self._floor_ms
            if at_floor:
                window_start = self._floor_ms
            if window_end >= window_start:
                logger.debug(f"Backwards search round {round_index} {window_start} -> {window_end}")
                with self._search(window_start, window_end) as window:
                    for item in window:
                        collected[self._key(item)] = item
            if at_floor:
                logger.info(f"Backwards search reached beginning of time with {len(collected)} found")
                break
            round_index += 1
        ordered = sorted(collected.values(), key=self._key)
        return ordered[-self._max_count:]


class ForwardSearchStream(TradingStream[T]):
    """
    Yields the first *max_count* elements from *start_ms* onwards.

    Round ``i`` searches ``[start + window*i, start + window*(i+1) - 1]``.  A
    new round is opened only once the previous one is exhausted, and rounds
    stop once a window would start after *ceiling_ms*.  Elements whose key is
    not after the last one yielded are skipped.
    """

    def __init__(
        self,
        max_count: int,
        start_ms: int,
        window_ms: int,
        ceiling_ms: int,
        search: WindowSearch,
        visitor: Optional[Visitor] = None,
        key: Callable[[T], object] = _default_key,
    ) -> None:
        if max_count < 1:
            raise ValueError(f"Count must be at least 1, was {max_count}")
        self._max_count = max_count
        self._start_ms = start_ms
        self._window_ms = window_ms
        self._ceiling_ms = ceiling_ms
        self._search = search
        self._visitor = visitor
        self._key = key
        self._round_index = 0
        self._given = 0
        self._last_key = None
        self._current: Optional[TradingStream[T]] = None
        self._peeked = _EMPTY

    def has_next(self) -> bool:
        if self._peeked is not _EMPTY:
            return True
        if self._given >= self._max_count:
            return False
        while True:
            if self._current is not None and self._current.has_next():
                candidate = self._current.next()
                candidate_key = self._key(candidate)
                if self._last_key is not None and candidate_key <= self._last_key:
                    continue
                self._peeked = candidate
                return True
            if not self._open_next_window():
                return False

    def next(self) -> T:
        if not self.has_next():
            raise StopIteration
        item, self._peeked = self._peeked, _EMPTY
        self._given += 1
        self._last_key = self._key(item)
        if self._visitor is not None:
            self._visitor(item)
        return item

    def close(self) -> None:
        if self._current is not None:
            current, self._current = self._current, None
            current.close()

    def _open_next_window(self) -> bool:
        window_start = self._start_ms + self._window_ms * self._round_index
        if window_start > self._ceiling_ms:
            logger.info(f"Forward search passed end of time with {self._given} given")
            return False
        window_end = window_start + self._window_ms - 1
        self.close()
        logger.debug(f"Forward search round {self._round_index} {window_start} -> {window_end}")
        self._current = self._search(window_start, window_end)
        self._round_index += 1
        return True


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------
def stream_from(
    items: Iterable[T],
    visitor: Optional[Visitor] = None,
    on_close: Optional[OnClose] = None,
) -> CollectionStream[T]:
    return CollectionStream(items, visitor=visitor, on_close=on_close)


def empty_stream() -> CollectionStream:
    return CollectionStream(())


def combine(
    streams: Iterable[TradingStream[T]],
    predicate: Optional[Callable[[T], bool]] = None,
) -> StreamCombiner[T]:
    return StreamCombiner(streams, predicate)


def map_stream(
    stream: TradingStream[T],
    transform: Callable[[T], R],
    on_close: Optional[OnClose] = None,
) -> MappedStream[R]:
    return MappedStream(stream, transform, on_close)
