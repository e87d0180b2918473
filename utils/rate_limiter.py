"""
Fixed-window rate limiter over an injected key-value store.

check() and record() are separate calls, so two callers may both see
`allowed=True` for the last slot in a window and both record. The overshoot
is bounded by the number of concurrent callers. Only the caller that creates
the start key opens a window, and each window counts under its own key, so a
rollover never resets a count another caller already incremented.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from models.errors import RateLimitExceeded
from utils.kv_store import KeyValueStore, now_ms
from utils.logger import get_logger

logger = get_logger(__name__)

MIN_RETRY_WAIT_MS = 50


@dataclass(frozen=True)
class RateLimitConfig:
    key: str
    limit: int
    window_duration_ms: int
    max_retries: int = 3


@dataclass(frozen=True)
class RateWindow:
    key: str
    window_start_ms: int
    count: int
    limit: int
    window_duration_ms: int

    @property
    def reset_at_ms(self) -> int:
        return self.window_start_ms + self.window_duration_ms

    def is_expired(self, now: int) -> bool:
        return now - self.window_start_ms >= self.window_duration_ms


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in_ms: int
    retry: Callable[[], Awaitable[bool]] = field(repr=False, compare=False)


class RateLimiter:
    """
    Bounds request volume per key within fixed windows.

    Args:
        store: Shared key-value store holding window start and count
        clock: Millisecond clock (injectable for tests)
        sleep: Coroutine used to wait between retries (injectable for tests)
        key_prefix: Namespace for the limiter's keys in the store
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        key_prefix: str = "ratelimit",
    ):
        self._store = store
        self._clock = clock
        self._sleep = sleep
        self._prefix = key_prefix

    def _start_key(self, key: str) -> str:
        return f"{self._prefix}:{key}:start"

    def _count_key(self, key: str, window_start_ms: int) -> str:
        return f"{self._prefix}:{key}:{window_start_ms}:count"

    async def _start_window(self, config: RateLimitConfig, now: int, expired_start: str | None) -> int:
        start_key = self._start_key(config.key)
        if expired_start is not None:
            # Start key outlived its window (clock skew between processes); the new
            # start gets its own count key.
            await self._store.set(start_key, str(now), ttl_ms=config.window_duration_ms)
            return now
        if await self._store.set_if_absent(start_key, str(now), ttl_ms=config.window_duration_ms):
            return now
        # Another caller opened the window first
        start_raw = await self._store.get(start_key)
        return int(start_raw) if start_raw is not None else now

    async def _load_window(self, config: RateLimitConfig) -> RateWindow:
        """Load the active window for config.key, starting a fresh one if absent or elapsed."""
        now = self._clock()
        start_raw = await self._store.get(self._start_key(config.key))

        if start_raw is None or now - int(start_raw) >= config.window_duration_ms:
            window_start = await self._start_window(config, now, start_raw)
        else:
            window_start = int(start_raw)

        count_raw = await self._store.get(self._count_key(config.key, window_start))
        return RateWindow(
            key=config.key,
            window_start_ms=window_start,
            count=int(count_raw or 0),
            limit=config.limit,
            window_duration_ms=config.window_duration_ms,
        )

    async def check(self, config: RateLimitConfig) -> RateLimitResult:
        """
        Compare the active window's count to the limit.

        Raises:
            BackendError: if the store is unreachable (never silently allows)
        """
        window = await self._load_window(config)
        now = self._clock()

        async def retry() -> bool:
            return await self._retry(config)

        return RateLimitResult(
            allowed=window.count < config.limit,
            remaining=max(0, config.limit - window.count),
            reset_in_ms=max(0, window.reset_at_ms - now),
            retry=retry,
        )

    async def _retry(self, config: RateLimitConfig) -> bool:
        for attempt in range(1, config.max_retries + 1):
            window = await self._load_window(config)
            if window.count < config.limit:
                return True

            wait_ms = max(window.reset_at_ms - self._clock(), MIN_RETRY_WAIT_MS)
            logger.info(
                "Rate limited, waiting for window rollover",
                extra={
                    "extra_fields": {
                        "key": config.key,
                        "attempt": attempt,
                        "max_retries": config.max_retries,
                        "wait_ms": wait_ms,
                    }
                },
            )
            await self._sleep(wait_ms / 1000)

            window = await self._load_window(config)
            if window.count < config.limit:
                return True

        return False

    async def record(self, config: RateLimitConfig) -> int:
        """Count one request against the active window. Call only after check() allowed it."""
        window = await self._load_window(config)
        return await self._store.incr(
            self._count_key(config.key, window.window_start_ms), ttl_ms=config.window_duration_ms
        )

    async def enforce(self, config: RateLimitConfig) -> RateLimitResult:
        """
        check → retry while blocked → record.

        Raises:
            RateLimitExceeded: still blocked after config.max_retries waits
            BackendError: store unreachable
        """
        result = await self.check(config)
        if not result.allowed:
            if not await result.retry():
                logger.warning(
                    "Rate limit exceeded",
                    extra={"extra_fields": {"key": config.key, "limit": config.limit}},
                )
                raise RateLimitExceeded(config.key, reset_in_ms=result.reset_in_ms)
        await self.record(config)
        return result
