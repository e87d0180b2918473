import asyncio

import pytest

from models.errors import BackendError, RateLimitExceeded
from utils.kv_store import InMemoryKVStore, KeyValueStore
from utils.rate_limiter import RateLimitConfig, RateLimiter


def _limiter(store, clock):
    return RateLimiter(store, clock=clock, sleep=clock.sleep)


@pytest.mark.asyncio
async def test_limit_pairs_exhaust_window_until_it_elapses(store, clock):
    limiter = _limiter(store, clock)
    config = RateLimitConfig(key="global", limit=3, window_duration_ms=10_000)

    for _ in range(3):
        result = await limiter.check(config)
        assert result.allowed
        await limiter.record(config)

    blocked = await limiter.check(config)
    assert not blocked.allowed
    assert blocked.remaining == 0
    assert blocked.reset_in_ms == 10_000

    clock.advance(9_999)
    assert not (await limiter.check(config)).allowed

    clock.advance(1)
    fresh = await limiter.check(config)
    assert fresh.allowed
    assert fresh.remaining == 3


@pytest.mark.asyncio
async def test_check_does_not_count_requests(store, clock):
    limiter = _limiter(store, clock)
    config = RateLimitConfig(key="k", limit=1, window_duration_ms=1_000)

    for _ in range(5):
        assert (await limiter.check(config)).allowed


@pytest.mark.asyncio
async def test_retry_returns_true_once_fresh_window_begins(store, clock):
    limiter = _limiter(store, clock)
    config = RateLimitConfig(key="k", limit=1, window_duration_ms=5_000, max_retries=3)

    await limiter.record(config)
    clock.advance(2_000)
    result = await limiter.check(config)
    assert not result.allowed

    assert await result.retry() is True
    # Slept until the expected rollover
    assert clock.sleeps == [3.0]


@pytest.mark.asyncio
async def test_retry_returns_false_after_max_retries_when_window_never_resolves(clock):
    class StuckStore(KeyValueStore):
        """Window start always 'now', count always over the limit."""

        async def get(self, key):
            return str(clock()) if key.endswith(":start") else "99"

        async def set(self, key, value, ttl_ms=None):
            return None

        async def set_if_absent(self, key, value, ttl_ms):
            return False

        async def incr(self, key, ttl_ms):
            return 100

    limiter = RateLimiter(StuckStore(), clock=clock, sleep=clock.sleep)
    config = RateLimitConfig(key="k", limit=1, window_duration_ms=1_000, max_retries=3)

    result = await limiter.check(config)
    assert not result.allowed
    assert await result.retry() is False
    assert len(clock.sleeps) == 3


@pytest.mark.asyncio
async def test_enforce_records_when_allowed(store, clock):
    limiter = _limiter(store, clock)
    config = RateLimitConfig(key="user-1", limit=2, window_duration_ms=60_000)

    await limiter.enforce(config)
    await limiter.enforce(config)

    assert not (await limiter.check(config)).allowed


@pytest.mark.asyncio
async def test_enforce_waits_for_rollover_then_admits(store, clock):
    limiter = _limiter(store, clock)
    config = RateLimitConfig(key="k", limit=1, window_duration_ms=5_000, max_retries=1)

    await limiter.enforce(config)
    result = await limiter.enforce(config)

    assert result.allowed is False  # the original check was blocked
    assert clock.sleeps == [5.0]
    # Counted in the new window
    assert not (await limiter.check(config)).allowed


@pytest.mark.asyncio
async def test_enforce_raises_when_still_blocked(clock):
    class StuckStore(KeyValueStore):
        async def get(self, key):
            return str(clock()) if key.endswith(":start") else "5"

        async def set(self, key, value, ttl_ms=None):
            return None

        async def set_if_absent(self, key, value, ttl_ms):
            return False

        async def incr(self, key, ttl_ms):
            return 6

    limiter = RateLimiter(StuckStore(), clock=clock, sleep=clock.sleep)
    config = RateLimitConfig(key="k", limit=5, window_duration_ms=1_000, max_retries=2)

    with pytest.raises(RateLimitExceeded) as exc_info:
        await limiter.enforce(config)
    assert exc_info.value.key == "k"


@pytest.mark.asyncio
async def test_unreachable_store_is_reported_not_allowed(clock):
    class DownStore(KeyValueStore):
        async def get(self, key):
            raise BackendError("connection refused")

        async def set(self, key, value, ttl_ms=None):
            raise BackendError("connection refused")

        async def set_if_absent(self, key, value, ttl_ms):
            raise BackendError("connection refused")

        async def incr(self, key, ttl_ms):
            raise BackendError("connection refused")

    limiter = RateLimiter(DownStore(), clock=clock, sleep=clock.sleep)
    config = RateLimitConfig(key="k", limit=5, window_duration_ms=1_000)

    with pytest.raises(BackendError):
        await limiter.check(config)
    with pytest.raises(BackendError):
        await limiter.enforce(config)


@pytest.mark.asyncio
async def test_keys_are_independent(store, clock):
    limiter = _limiter(store, clock)
    a = RateLimitConfig(key="a", limit=1, window_duration_ms=1_000)
    b = RateLimitConfig(key="b", limit=1, window_duration_ms=1_000)

    await limiter.record(a)

    assert not (await limiter.check(a)).allowed
    assert (await limiter.check(b)).allowed


class StalledReadStore(InMemoryKVStore):
    """Parks the first window-start read until released, like a slow network reply."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self.release = asyncio.Event()
        self._stalled = False

    async def get(self, key):
        value = await super().get(key)
        if key.endswith(":start") and not self._stalled:
            self._stalled = True
            await self.release.wait()
        return value


@pytest.mark.asyncio
async def test_concurrent_records_opening_a_window_are_both_counted(clock):
    store = StalledReadStore(clock)
    limiter = RateLimiter(store, clock=clock, sleep=clock.sleep)
    config = RateLimitConfig(key="k", limit=5, window_duration_ms=10_000)

    slow = asyncio.create_task(limiter.record(config))
    await asyncio.sleep(0)  # slow has read "no window" and is parked

    assert await limiter.record(config) == 1
    store.release.set()
    assert await slow == 2

    result = await limiter.check(config)
    assert result.remaining == 3
    assert result.reset_in_ms == 10_000
