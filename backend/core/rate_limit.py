"""
Fixed-window rate limiting for the warehouse API.

Limiters are injected through ``api.deps.get_rate_limiter`` so the backing
store can be swapped: the in-memory limiter is process-local and resets on
restart, the Redis limiter shares counters across service instances.

The window opens on the first request for a key and lasts ``window_seconds``.
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds
    retry_after: int

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_at))),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter(Protocol):
    async def hit(self, key: str) -> RateLimitDecision: ...


def _decision(count: int, limit: int, reset_at: float, now: float) -> RateLimitDecision:
    return RateLimitDecision(
        allowed=count <= limit,
        limit=limit,
        remaining=max(0, limit - count),
        reset_at=reset_at,
        retry_after=max(1, int(math.ceil(reset_at - now))),
    )


class InMemoryRateLimiter:
    """Process-local counters keyed by API-key prefix."""

    def __init__(
        self,
        max_requests: int = 200,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}

    async def hit(self, key: str) -> RateLimitDecision:
        now = self._clock()
        count, reset_at = self._windows.get(key, (0, now + self.window_seconds))
        if now > reset_at:
            count, reset_at = 0, now + self.window_seconds
        count += 1
        self._windows[key] = (count, reset_at)
        return _decision(count, self.max_requests, reset_at, now)

    def reset(self) -> None:
        self._windows.clear()


class RedisRateLimiter:
    """Shared counters: INCR per key, EXPIRE set when the window opens."""

    def __init__(
        self,
        redis,
        max_requests: int = 200,
        window_seconds: int = 60,
        namespace: str = "ratelimit",
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.namespace = namespace
        self._clock = clock

    async def hit(self, key: str) -> RateLimitDecision:
        redis_key = f"{self.namespace}:{key}"
        now = self._clock()
        count = int(await self.redis.incr(redis_key))
        if count == 1:
            await self.redis.expire(redis_key, self.window_seconds)
            ttl = self.window_seconds
        else:
            ttl = int(await self.redis.ttl(redis_key))
            if ttl < 0:
                # Counter survived without an expiry (e.g. crash between INCR and EXPIRE).
                await self.redis.expire(redis_key, self.window_seconds)
                ttl = self.window_seconds
        return _decision(count, self.max_requests, now + ttl, now)
