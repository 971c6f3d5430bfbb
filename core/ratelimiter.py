"""
core/ratelimiter.py -- Process-local fixed-window rate limiter.

Every request is admitted or rejected by allow(key), where key is the client
address. A window starts at the first request for a key; requests are counted
until the window elapses, then the next request opens a fresh window.

Known trade-off: a client can send up to 2x max requests across a window
boundary (max at the end of one window, max at the start of the next). This
is accepted in exchange for O(1) state per key.

Counting is delegated to the `limits` package (the engine underneath slowapi):
a FixedWindowRateLimiter strategy over an in-memory storage. The storage
increments each key under its own lock, so concurrent requests for one key
never lose an increment, and it opens the window on the first hit.

Layer rule: no imports from api/, auth/, cache/, mailer/, or posts/.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol, runtime_checkable

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter as _FixedWindowStrategy

logger = logging.getLogger("socialgate.ratelimit")

_NAMESPACE = "socialgate"


@runtime_checkable
class RateLimiter(Protocol):
    def allow(self, key: str) -> tuple[bool, float]: ...

    def purge_expired(self) -> int: ...

    def active_windows(self) -> int: ...


class FixedWindowRateLimiter:
    """Fixed-window limiter backed by limits' in-memory storage.

    Usage:
        limiter = FixedWindowRateLimiter(max_requests=20, window_seconds=5)
        permitted, retry_after = limiter.allow("203.0.113.7")
    """

    def __init__(self, max_requests: int, window_seconds: float) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._item = RateLimitItemPerSecond(max_requests, window_seconds, namespace=_NAMESPACE)
        self._storage = MemoryStorage()
        self._strategy = _FixedWindowStrategy(self._storage)

    def allow(self, key: str) -> tuple[bool, float]:
        """Count one request for key.

        Returns (True, 0.0) when admitted, or (False, retry_after) where
        retry_after is the number of seconds until the current window ends.
        """
        if self._strategy.hit(self._item, key):
            return True, 0.0
        stats = self._strategy.get_window_stats(self._item, key)
        retry_after = min(self.window_seconds, max(stats.reset_time - time.time(), 0.0))
        return False, retry_after

    def purge_expired(self) -> int:
        """Drop windows that have elapsed. Returns the number removed."""
        now = time.time()
        stale = [k for k, expiry in list(self._storage.expirations.items()) if expiry <= now]
        for storage_key in stale:
            self._storage.clear(storage_key)
        if stale:
            logger.debug("Purged %d expired rate windows", len(stale))
        return len(stale)

    def active_windows(self) -> int:
        return len(self._storage.expirations)


class NullRateLimiter:
    """Limiter used when rate limiting is disabled. Admits everything."""

    def allow(self, key: str) -> tuple[bool, float]:
        return True, 0.0

    def purge_expired(self) -> int:
        return 0

    def active_windows(self) -> int:
        return 0


def build_rate_limiter(enabled: bool, max_requests: int, window_seconds: float) -> RateLimiter:
    """Select the limiter implementation once, at startup."""
    if not enabled:
        logger.info("Rate limiting disabled")
        return NullRateLimiter()
    return FixedWindowRateLimiter(max_requests=max_requests, window_seconds=window_seconds)
