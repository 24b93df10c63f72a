"""Token bucket limiting how often the provider is called.

One limiter is meant to be created per process and handed to every direct
fetcher, so the whole process stays under the provider's request rate.
"""

import threading
import time
from typing import Callable


class RateLimiter:
    """
    Smooth limiter issuing *permits_per_second* permits.  The first permit is
    immediate; after that callers are spaced ``1 / permits_per_second`` apart.
    """

    def __init__(
        self,
        permits_per_second: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if permits_per_second <= 0:
            raise ValueError(f"permits_per_second must be positive, was {permits_per_second}")
        self.permits_per_second = permits_per_second
        self._interval = 1.0 / permits_per_second
        self._clock = clock
        self._sleep = sleep
        self._next_free = clock()
        self._lock = threading.Lock()

    def acquire(self) -> float:
        """Block until a permit is available.  Returns the seconds waited."""
        with self._lock:
            now = self._clock()
            wait = max(self._next_free - now, 0.0)
            self._next_free = max(self._next_free, now) + self._interval
        if wait > 0:
            self._sleep(wait)
        return wait
