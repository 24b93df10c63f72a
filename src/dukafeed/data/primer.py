"""
Bulk cache warm-up.

Submits one fetch per hour file to a thread pool sized to the machine, so a
long range can be pulled into the local (and S3) tiers before any search runs.
A failed file is logged and does not stop the others.

Usage::

    primer = DukascopyCachePrimer(tick_cache)
    primer.new_load()
    for symbol in ("EURUSD", "AUDUSD"):
        primer.load(symbol, "2018-01-01T00:00:00Z", "2018-02-01T00:00:00Z")
    primer.wait_for_completion()
    primer.shutdown()
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from contextlib import closing
from typing import Optional

from dukafeed.data.tick_cache import TickCache
from dukafeed.exchanges.dukascopy_paths import DukascopyPathGenerator
from dukafeed.helpers.time_helper import Instant


class DukascopyCachePrimer:
    """
    Parameters
    ----------
    cache : TickCache
        Head of the tick chain to warm.
    path_generator : DukascopyPathGenerator, optional
    max_workers : int, optional
        Defaults to the number of CPUs.
    logger : logging.Logger, optional
    """

    def __init__(
        self,
        cache: TickCache,
        path_generator: Optional[DukascopyPathGenerator] = None,
        max_workers: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.cache = cache
        self.path_generator = path_generator or DukascopyPathGenerator()
        self.max_workers = max_workers or os.cpu_count() or 1
        self.logger = logger or logging.getLogger(__name__)
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="primer")
        self._futures: dict[Future, str] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def new_load(self) -> None:
        self._futures.clear()

    def load(self, symbol: str, start: Instant, end: Instant) -> int:
        """Queue every hour file of *symbol* in [start, end].  Returns the count queued."""
        paths = self.path_generator.generate_paths(symbol, start, end)
        for path in paths:
            self._futures[self._executor.submit(self._load_path, path)] = path
        self.logger.info(f"[{symbol}] Queued {len(paths)} hour file(s)")
        return len(paths)

    def wait_for_completion(self) -> dict[str, int]:
        """Block until every queued file is done.  Returns loaded/failed counts."""
        self.logger.info(f"Waiting for {len(self._futures)} file(s) to complete")
        results = {"loaded": 0, "failed": 0}
        for future in as_completed(list(self._futures)):
            results["loaded" if future.result() else "failed"] += 1
        self.logger.info(f"Primer complete: {results['loaded']} loaded, {results['failed']} failed")
        return results

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _load_path(self, path: str) -> bool:
        try:
            with closing(self.cache.stream(path)) as data:
                size = len(data.read())
            self.logger.info(f"Loaded {path} {size}b")
            return True
        except Exception as exc:
            self.logger.error(f"Failed to load {path}: {exc}", exc_info=True)
            return False
