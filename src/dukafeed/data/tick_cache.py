"""
Tick file cache chain.

Each tier wraps a fallback tier.  ``stream(path)`` checks the tier, and on a
miss pulls the bytes from the fallback, saves them locally and returns them.
The usual chain is::

    LocalTickCache -> S3TickCache -> DirectTickFetcher

Each tier counts its own retrieves, hits and misses; ``cache_stats()`` renders
them for the whole chain, e.g.::

    LocalTickCache 2 1h 1m 50.00% -> (DirectTickFetcher: 1 retrieve(s) 0 retry(s))
"""

from __future__ import annotations

import io
import logging
import shutil
import threading
from abc import ABC, abstractmethod
from contextlib import closing
from pathlib import Path
from typing import BinaryIO, Optional

from dukafeed.data.bar_cache import BarCache, LocalBarCache, S3BarCache
from dukafeed.data.storage import (
    directory_size,
    read_if_present,
    s3_exists,
    s3_get_or_none,
    s3_key,
    write_atomically,
)

DEFAULT_CACHE_DIR = "~/.dukascopy-cache"


# ---------------------------------------------------------------------------
# Tier interface
# ---------------------------------------------------------------------------
class TickCache(ABC):
    """A source of raw bi5 bytes keyed by archive path, with counters."""

    def __init__(self) -> None:
        self.retrieve_count = 0
        self.hit_count = 0
        self.miss_count = 0
        self._counter_lock = threading.Lock()

    @abstractmethod
    def stream(self, path: str) -> BinaryIO:
        pass

    @abstractmethod
    def cache_stats(self) -> str:
        pass

    @abstractmethod
    def create_bar_cache(self, tick_search) -> BarCache:
        """Build the bar cache chain that mirrors this tick chain."""

    def _count(self, counter: str) -> None:
        with self._counter_lock:
            setattr(self, counter, getattr(self, counter) + 1)


class FallbackTickCache(TickCache):
    """
    Check-then-fallback template shared by the storing tiers.

    Subclasses implement ``_check_cache`` (bytes, or None when absent) and
    ``_save_to_cache``.
    """

    def __init__(self, fallback: TickCache, logger: Optional[logging.Logger] = None) -> None:
        super().__init__()
        self.fallback = fallback
        self.logger = logger or logging.getLogger(__name__)

    def stream(self, path: str) -> BinaryIO:
        data = self._check_cache(path)
        self._count("miss_count" if data is None else "hit_count")
        self._count("retrieve_count")
        if data is None:
            self.logger.debug(f"{type(self).__name__} miss {path}")
            data = self._fetch_and_save(path)
        else:
            self.logger.debug(f"{type(self).__name__} hit {path}")
        return io.BytesIO(data)

    def cache_stats(self) -> str:
        retrieve = self.retrieve_count
        hit_rate = (self.hit_count / retrieve * 100.0) if retrieve else 0.0
        return (
            f"{type(self).__name__} {retrieve} {self.hit_count}h {self.miss_count}m "
            f"{hit_rate:.2f}% -> ({self.fallback.cache_stats()})"
        )

    def _fetch_and_save(self, path: str) -> bytes:
        with closing(self.fallback.stream(path)) as source:
            data = source.read()
        self._save_to_cache(path, data)
        return data

    @abstractmethod
    def _check_cache(self, path: str) -> Optional[bytes]:
        pass

    @abstractmethod
    def _save_to_cache(self, path: str, data: bytes) -> None:
        pass


# ---------------------------------------------------------------------------
# Local disk tier
# ---------------------------------------------------------------------------
class LocalTickCache(FallbackTickCache):
    """
    Disk tier mirroring the archive layout under *cache_dir*.

    Parameters
    ----------
    fallback : TickCache
        Tier consulted on a miss.
    cache_dir : str | Path, optional
        Root directory.  Defaults to ``~/.dukascopy-cache``.
    logger : logging.Logger, optional
        Falls back to the module logger.
    """

    def __init__(
        self,
        fallback: TickCache,
        cache_dir: Optional[str | Path] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(fallback, logger)
        self.cache_dir = Path(cache_dir or DEFAULT_CACHE_DIR).expanduser()
        self._lock = threading.Lock()
        self.logger.info(f"Local tick cache at {self.cache_dir}")

    def cache_size(self) -> int:
        """Bytes stored under the cache root."""
        return directory_size(self.cache_dir)

    def remove_cache(self) -> None:
        if self.cache_dir.exists():
            self.logger.warning(f"Removing local cache {self.cache_dir}")
            shutil.rmtree(self.cache_dir)

    def create_bar_cache(self, tick_search) -> BarCache:
        return LocalBarCache(
            self.fallback.create_bar_cache(tick_search), cache_dir=self.cache_dir, logger=self.logger
        )

    def _check_cache(self, path: str) -> Optional[bytes]:
        with self._lock:
            return read_if_present(self.cache_dir / path)

    def _save_to_cache(self, path: str, data: bytes) -> None:
        target = self.cache_dir / path
        with self._lock:
            if target.exists():
                return
            write_atomically(target, data)
        self.logger.debug(f"Saved {len(data)} bytes to {target}")


# ---------------------------------------------------------------------------
# S3 tier
# ---------------------------------------------------------------------------
class S3TickCache(FallbackTickCache):
    """
    Shared object-store tier.

    Parameters
    ----------
    s3_client : botocore client
        e.g. ``boto3.client("s3")``.
    bucket : str
        Bucket holding the mirrored archive.
    fallback : TickCache
        Tier consulted on a miss.
    prefix : str
        Optional key prefix inside the bucket.
    """

    def __init__(
        self,
        s3_client,
        bucket: str,
        fallback: TickCache,
        prefix: str = "",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(fallback, logger)
        self.s3 = s3_client
        self.bucket = bucket
        self.prefix = prefix
        # exists-check then put is not atomic
        self._s3_lock = threading.Lock()

    def create_bar_cache(self, tick_search) -> BarCache:
        return S3BarCache(
            self.s3,
            self.bucket,
            self.fallback.create_bar_cache(tick_search),
            prefix=self.prefix,
            logger=self.logger,
        )

    def _check_cache(self, path: str) -> Optional[bytes]:
        return s3_get_or_none(self.s3, self.bucket, s3_key(self.prefix, path))

    def _save_to_cache(self, path: str, data: bytes) -> None:
        key = s3_key(self.prefix, path)
        with self._s3_lock:
            if s3_exists(self.s3, self.bucket, key):
                return
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=data)
        self.logger.debug(f"Saved {len(data)} bytes to s3://{self.bucket}/{key}")
