"""Sliding-window rate limiter used by the API gateway.

Each key (client address, optionally scoped by route group) keeps a deque of
request timestamps.  A request is allowed when fewer than ``max_requests``
timestamps fall inside the trailing ``window_seconds``.  Keys with no hits
left in the window are swept at most once per window.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: float = 0.0


class SlidingWindowRateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        """Number of keys currently tracked."""
        with self._lock:
            return len(self._hits)

    def _sweep(self, cutoff: float) -> None:
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._hits[key]
        if idle:
            logger.debug("Rate limiter swept %d idle keys", len(idle))

    def check(self, key: str) -> RateLimitDecision:
        """Record a hit for *key* if allowed and report the outcome."""
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now

            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.max_requests:
                retry_after = hits[0] + self.window_seconds - now
                logger.info("Rate limit exceeded for %s (retry in %.1fs)", key, retry_after)
                return RateLimitDecision(allowed=False, remaining=0, retry_after=max(retry_after, 0.0))

            hits.append(now)
            return RateLimitDecision(allowed=True, remaining=self.max_requests - len(hits))

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
