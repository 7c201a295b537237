"""
Per-principal rate limiting for audit endpoints.

Fixed window through the limits library (the same engine slowapi uses for
the per-IP limit): the first request in a window starts it, later requests
increment, and anything over the limit is refused until the window resets.

The default MemoryStorage is process-local. Counters are lost on restart and
are not shared between replicas, so N replicas allow up to N times the limit.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Optional

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

NAMESPACE = "caseguard"


@dataclass(frozen=True)
class RateLimitStatus:
    """Outcome of one rate limit check."""

    allowed: bool
    remaining: int
    reset_in_ms: int


class RateLimiter:
    """
    Per-principal fixed-window limiter.

    Example:
        limiter = RateLimiter(MemoryStorage())
        status = limiter.check(principal.id, limit=50, window_ms=60_000)
        if not status.allowed:
            raise RateLimited(status)
    """

    def __init__(self, storage: Optional[Storage] = None):
        """
        Initialize rate limiter.

        Args:
            storage: limits storage backend, in-memory by default
        """
        self._storage = storage if storage is not None else MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)
        # MemoryStorage reads the counter back outside its per-key lock;
        # hit and stats are taken together so remaining matches the decision.
        self._lock = threading.Lock()

    def check(self, principal_id: str, limit: int, window_ms: int) -> RateLimitStatus:
        """
        Count a request and decide whether it is within quota.

        Args:
            principal_id: Caller the quota belongs to
            limit: Requests allowed per window
            window_ms: Window length in milliseconds, whole seconds at least

        Returns:
            RateLimitStatus
        """
        item = RateLimitItemPerSecond(
            limit, max(1, math.ceil(window_ms / 1000)), namespace=NAMESPACE
        )
        with self._lock:
            allowed = self._strategy.hit(item, "principal", principal_id)
            stats = self._strategy.get_window_stats(item, "principal", principal_id)

        status = RateLimitStatus(
            allowed=allowed,
            remaining=stats.remaining,
            reset_in_ms=max(0, math.ceil((stats.reset_time - time.time()) * 1000)),
        )
        if not allowed:
            logger.warning(f"Rate limit exceeded: principal {principal_id} ({limit} per {item.get_expiry()}s)")
        return status


def rate_limit_headers(status: RateLimitStatus) -> dict[str, str]:
    """Response headers describing the caller's quota."""
    return {
        "X-RateLimit-Remaining": str(status.remaining),
        "X-RateLimit-Reset": str(math.ceil(status.reset_in_ms / 1000)),
    }
