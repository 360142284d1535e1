"""
Challenge API Rate Limiting

Fixed-window request counters keyed by endpoint prefix and client
identifier (session cookie or client IP).

Both limiters fail open: a counter that cannot be read never blocks a
request.

Key Schema (Redis):
    {prefix}:{identifier}:{window_index}  → request count (EXPIRE = window)
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import redis
from redis.exceptions import RedisError

from core.clock import Clock, SystemClock


logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    """Epoch milliseconds when the current window closes."""

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }


class InMemoryRateLimiter:
    """Per-process fixed-window limiter."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def check(self, prefix: str, identifier: str, max_requests: int, window_seconds: int) -> RateLimitResult:
        now = self.clock.now_ms()
        window_ms = window_seconds * 1000.0
        key = f"{prefix}:{identifier}"

        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= window_ms:
                started, count = now, 0

            reset_at = started + window_ms
            if count >= max_requests:
                return RateLimitResult(False, max_requests, 0, reset_at)

            count += 1
            self._windows[key] = (started, count)
            self._prune_locked(now, window_ms)
            return RateLimitResult(True, max_requests, max_requests - count, reset_at)

    def _prune_locked(self, now: float, window_ms: float) -> None:
        # Keep the table bounded; only runs once it has grown
        if len(self._windows) < 10_000:
            return
        stale = [k for k, (started, _) in self._windows.items() if now - started >= window_ms]
        for k in stale:
            del self._windows[k]


class RedisRateLimiter:
    """Shared fixed-window limiter using INCR + EXPIRE."""

    def __init__(self, client: redis.Redis, clock: Optional[Clock] = None) -> None:
        self.client = client
        self.clock = clock or SystemClock()

    def check(self, prefix: str, identifier: str, max_requests: int, window_seconds: int) -> RateLimitResult:
        now_s = self.clock.now_ms() / 1000.0
        window = int(now_s // window_seconds)
        reset_at = (window + 1) * window_seconds * 1000.0
        key = f"{prefix}:{identifier}:{window}"

        try:
            count = self.client.incr(key)
            if count == 1:
                self.client.expire(key, math.ceil(window_seconds) + 1)  # Auto-cleanup
        except RedisError as e:
            logger.warning(f"Rate limit check failed: {e}")
            return RateLimitResult(True, max_requests, max_requests, reset_at)  # Fail open

        return RateLimitResult(
            allowed=count <= max_requests,
            limit=max_requests,
            remaining=max(0, max_requests - count),
            reset_at=reset_at,
        )
