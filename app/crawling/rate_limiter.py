"""
Request pacing for one crawler instance.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable


class RequestRateLimiter:
    """
    Enforces a minimum interval between consecutive requests of one crawler.

    The gate is global to the instance, not per domain. A larger robots.txt
    crawl delay overrides the configured interval for that request.
    """

    def __init__(
        self,
        *,
        min_interval_seconds: float,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._min_interval_seconds = max(0.0, min_interval_seconds)
        self._sleep = sleep
        self._clock = clock
        self._last_request: float | None = None
        self._lock = threading.Lock()

    def wait(self, *, crawl_delay_seconds: float | None = None) -> float:
        """
        Block until the next request may go out. Returns the seconds slept.
        """

        min_interval = self._min_interval_seconds
        if crawl_delay_seconds is not None:
            min_interval = max(min_interval, max(0.0, crawl_delay_seconds))

        with self._lock:
            waited = 0.0
            if self._last_request is not None:
                remaining = min_interval - (self._clock() - self._last_request)
                if remaining > 0:
                    self._sleep(remaining)
                    waited = remaining
            self._last_request = self._clock()
            return waited
