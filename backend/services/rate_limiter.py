"""Sliding-window rate limiter keyed by client identity.

Consulted only when a request misses the cache and is about to reach an
upstream API, so cached responses never count against a client.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

from errors import RateLimitDeniedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    retry_after: float = 0.0


class SlidingWindowLimiter:
    """Allow at most ``max_requests`` per identity in any ``window_seconds`` span."""

    def __init__(
        self,
        max_requests: int = 20,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: dict[str, deque[float]] = {}

    def _window(self, identity: str, now: float) -> deque[float]:
        timestamps = self._requests.setdefault(identity, deque())
        cutoff = now - self.window_seconds
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()
        return timestamps

    def check(self, identity: str) -> RateLimitResult:
        """Record a request for *identity* if allowed; report the outcome either way."""
        now = self._clock()
        timestamps = self._window(identity, now)

        if len(timestamps) >= self.max_requests:
            retry_after = timestamps[0] + self.window_seconds - now
            return RateLimitResult(allowed=False, remaining=0, limit=self.max_requests, retry_after=retry_after)

        timestamps.append(now)
        return RateLimitResult(
            allowed=True,
            remaining=self.max_requests - len(timestamps),
            limit=self.max_requests,
        )

    def acquire(self, identity: str) -> RateLimitResult:
        """Like ``check`` but raises ``RateLimitDeniedError`` when denied."""
        result = self.check(identity)
        if not result.allowed:
            logger.warning("Rate limit hit for %s (retry in %.1fs)", identity, result.retry_after)
            raise RateLimitDeniedError(result.retry_after, limit=result.limit)
        return result

    def prune(self) -> int:
        """Forget identities with no requests in the current window."""
        now = self._clock()
        idle = [identity for identity in list(self._requests) if not self._window(identity, now)]
        for identity in idle:
            del self._requests[identity]
        return len(idle)

    @property
    def tracked_clients(self) -> int:
        return len(self._requests)

