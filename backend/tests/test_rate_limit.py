"""
Tests for the warehouse API rate limiters (in-memory and Redis-backed).
"""

from core.rate_limit import InMemoryRateLimiter, RedisRateLimiter


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    """The three counter commands the limiter uses, with TTLs driven by FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.counts: dict[str, int] = {}
        self.expiry: dict[str, float] = {}

    def _evict(self, key: str) -> None:
        if key in self.expiry and self.clock() >= self.expiry[key]:
            self.counts.pop(key, None)
            self.expiry.pop(key, None)

    async def incr(self, key: str) -> int:
        self._evict(key)
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self.expiry[key] = self.clock() + seconds
        return True

    async def ttl(self, key: str) -> int:
        self._evict(key)
        if key not in self.counts:
            return -2
        if key not in self.expiry:
            return -1
        return int(self.expiry[key] - self.clock())


class TestInMemoryRateLimiter:
    async def test_counts_down_then_blocks(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(max_requests=2, window_seconds=60, clock=clock)

        first = await limiter.hit("wh_live_abcd")
        assert first.allowed
        assert first.headers() == {
            "X-RateLimit-Limit": "2",
            "X-RateLimit-Remaining": "1",
            "X-RateLimit-Reset": "1060",
        }
        assert (await limiter.hit("wh_live_abcd")).remaining == 0

        clock.now += 15
        blocked = await limiter.hit("wh_live_abcd")
        assert not blocked.allowed
        assert blocked.headers()["Retry-After"] == "45"

    async def test_keys_are_independent(self):
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
        assert (await limiter.hit("a")).allowed
        assert (await limiter.hit("b")).allowed
        assert not (await limiter.hit("a")).allowed

    async def test_window_resets(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60, clock=clock)
        await limiter.hit("k")
        assert not (await limiter.hit("k")).allowed

        clock.now += 61
        fresh = await limiter.hit("k")
        assert fresh.allowed
        assert fresh.reset_at == clock.now + 60

    async def test_reset_clears_counters(self):
        limiter = InMemoryRateLimiter(max_requests=1, clock=FakeClock())
        await limiter.hit("k")
        limiter.reset()
        assert (await limiter.hit("k")).allowed


class TestRedisRateLimiter:
    async def test_shared_counter_with_expiry(self):
        clock = FakeClock()
        redis = FakeRedis(clock)
        limiter = RedisRateLimiter(redis, max_requests=2, window_seconds=60, clock=clock)

        assert (await limiter.hit("wh_live_abcd")).allowed
        assert redis.expiry["ratelimit:wh_live_abcd"] == 1060

        clock.now += 10
        second = await limiter.hit("wh_live_abcd")
        assert second.allowed
        assert second.remaining == 0

        blocked = await limiter.hit("wh_live_abcd")
        assert not blocked.allowed
        assert blocked.retry_after == 50

        clock.now += 51
        assert (await limiter.hit("wh_live_abcd")).allowed

    async def test_two_instances_share_counts(self):
        clock = FakeClock()
        redis = FakeRedis(clock)
        first = RedisRateLimiter(redis, max_requests=1, clock=clock)
        second = RedisRateLimiter(redis, max_requests=1, clock=clock)

        assert (await first.hit("k")).allowed
        assert not (await second.hit("k")).allowed

    async def test_missing_expiry_is_repaired(self):
        clock = FakeClock()
        redis = FakeRedis(clock)
        redis.counts["ratelimit:k"] = 5
        limiter = RedisRateLimiter(redis, max_requests=10, window_seconds=30, clock=clock)

        decision = await limiter.hit("k")
        assert decision.remaining == 4
        assert redis.expiry["ratelimit:k"] == clock.now + 30
