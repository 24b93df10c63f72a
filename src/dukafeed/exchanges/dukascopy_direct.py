"""
Direct download of hour files from the Dukascopy datafeed.

This is the last tier of the tick cache chain: it never stores anything, it
fetches ``{base_url}{path}`` under a shared rate limiter.  The datafeed answers
with 5xx (and occasionally 429) when it is overloaded; those responses are
retried with a linearly growing pause.  Anything else is raised immediately.
"""

from __future__ import annotations

import io
import logging
import time
from typing import BinaryIO, Optional

import requests

from dukafeed.core.exceptions import ServerBusyError
from dukafeed.data.bar_cache import BarCache, DirectBarNoCache
from dukafeed.data.tick_cache import TickCache
from dukafeed.exchanges.rate_limiter import RateLimiter

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
DEFAULT_BASE_URL = "https://datafeed.dukascopy.com/datafeed/"

_DEFAULT_POOL_SIZE = 8
_REQUEST_TIMEOUT = 30
_RETRY_ATTEMPTS = 3
_RETRY_DELAY = 1.0
_SERVER_BUSY_STATUS = {429, 500, 502, 503, 504}


# ---------------------------------------------------------------------------
# DirectTickFetcher
# ---------------------------------------------------------------------------
class DirectTickFetcher(TickCache):
    """
    Rate limited, retrying fetch of raw bi5 bytes.

    Parameters
    ----------
    rate_limiter : RateLimiter
        Shared limiter; every HTTP attempt takes one permit.
    base_url : str
        Datafeed root, with trailing slash.
    max_retries : int
        Retries of a server-busy response before giving up.
    retry_seconds : float
        Pause before retry ``n`` is ``retry_seconds * n``.
    timeout : float
        Per-request timeout in seconds.
    session : requests.Session, optional
        Built with a pooled adapter when omitted.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        base_url: str = DEFAULT_BASE_URL,
        max_retries: int = _RETRY_ATTEMPTS,
        retry_seconds: float = _RETRY_DELAY,
        timeout: float = _REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__()
        self.rate_limiter = rate_limiter
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.max_retries = max_retries
        self.retry_seconds = retry_seconds
        self.timeout = timeout
        self.retry_count = 0
        self.logger = logger or logging.getLogger(__name__)
        self._session = session or self._build_session(_DEFAULT_POOL_SIZE)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def stream(self, path: str) -> BinaryIO:
        url = f"{self.base_url}{path}"
        self.logger.debug(f"Fetching {url}")
        data = self._get_with_retry(url, path)
        self._count("retrieve_count")
        self._count("miss_count")
        return io.BytesIO(data)

    def cache_stats(self) -> str:
        return f"DirectTickFetcher: {self.retrieve_count} retrieve(s) {self.retry_count} retry(s)"

    def create_bar_cache(self, tick_search) -> BarCache:
        return DirectBarNoCache(tick_search)

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _build_session(pool_size: int) -> requests.Session:
        session = requests.Session()
        adapter = requests.adapters.HTTPAdapter(
            pool_connections=pool_size,
            pool_maxsize=pool_size * 2,
        )
        session.mount("https://", adapter)
        return session

    def _get_with_retry(self, url: str, path: str) -> bytes:
        attempt = 0
        while True:
            self.rate_limiter.acquire()
            try:
                resp = self._session.get(url, timeout=self.timeout)
                resp.raise_for_status()
                return resp.content
            except requests.HTTPError as exc:
                status = exc.response.status_code if exc.response is not None else None
                if status not in _SERVER_BUSY_STATUS:
                    raise
                if attempt >= self.max_retries:
                    raise ServerBusyError(
                        f"Server busy after {attempt + 1} attempt(s) for {url}",
                        path=path,
                        attempts=attempt + 1,
                    ) from exc
                attempt += 1
                self._count("retry_count")
                pause = self.retry_seconds * attempt
                self.logger.warning(
                    f"Server busy ({status}) for {path}, retry {attempt} in {pause:.1f}s"
                )
                time.sleep(pause)
