"""
NodeGate - Request Rate Limiting
==================================
Fixed-window request counter per (route, client IP), used to slow down
brute-force attempts on the wallet login endpoint.
"""

import math
import threading
import time
from typing import Callable

from fastapi import Request

from nodegate.errors import RateLimitExceeded


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer, else "unknown"."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


class RateLimiter:
    """
    In-memory fixed-window limiter.

    Attributes:
        window:       Window length in seconds.
        max_requests: Requests allowed per client within one window.
    """

    def __init__(
        self,
        window: float = 60.0,
        max_requests: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window = window
        self.max_requests = max_requests
        self._clock = clock
        self._counters: dict[tuple[str, str], tuple[int, float]] = {}
        self._lock = threading.Lock()

    def check(self, route: str, client: str) -> None:
        """
        Count one request.

        Raises:
            RateLimitExceeded: The client used up its window; carries the
                               seconds left until the window resets.
        """
        key = (route, client)
        with self._lock:
            now = self._clock()
            count, started = self._counters.get(key, (0, now))

            if now - started >= self.window:
                count, started = 0, now

            if count >= self.max_requests:
                retry_after = max(1, math.ceil(started + self.window - now))
                raise RateLimitExceeded(retry_after)

            self._counters[key] = (count + 1, started)

    def dependency(self, route: str):
        """FastAPI dependency enforcing this limiter for one route name."""
        async def _limit(request: Request) -> None:
            self.check(route, client_ip(request))
        return _limit
