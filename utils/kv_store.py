"""
Key-value stores shared by the rate limiter and the result cache.

Both consumers receive a store as a constructor argument. Tests and
single-process deployments use InMemoryKVStore; multi-process deployments
point REDIS_URL at a Redis instance so windows and cache entries are shared.
"""

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from models.errors import BackendError
from utils.logger import get_logger

logger = get_logger(__name__)


def now_ms() -> int:
    """Wall-clock milliseconds since the epoch."""
    return int(time.time() * 1000)


class KeyValueStore(ABC):
    """Async get / set / increment-with-expiry. Implementations raise BackendError when unreachable."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl_ms: int | None = None) -> None:
        pass

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        """Atomically create `key` unless it is already live. Returns True when this call created it."""

    @abstractmethod
    async def incr(self, key: str, ttl_ms: int) -> int:
        """Atomically add one to an integer key, creating it with `ttl_ms` expiry when absent."""

    async def close(self) -> None:
        return None


class InMemoryKVStore(KeyValueStore):
    """
    Thread-safe in-memory store with per-key expiry.

    Expired keys are dropped lazily on read. The clock is injectable for
    deterministic tests.
    """

    def __init__(self, clock: Callable[[], int] = now_ms):
        self._data: dict[str, tuple[str, int | None]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _live(self, key: str) -> tuple[str, int | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_ms: int | None = None) -> None:
        with self._lock:
            expires_at = self._clock() + ttl_ms if ttl_ms else None
            self._data[key] = (value, expires_at)

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, self._clock() + ttl_ms)
            return True

    async def incr(self, key: str, ttl_ms: int) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                self._data[key] = ("1", self._clock() + ttl_ms)
                return 1
            value, expires_at = entry
            new_value = int(value) + 1
            self._data[key] = (str(new_value), expires_at)
            return new_value

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class RedisKVStore(KeyValueStore):
    """Redis-backed store; every RedisError surfaces as BackendError."""

    def __init__(self, client: aioredis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKVStore":
        return cls(aioredis.Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except RedisError as e:
            raise BackendError(f"Redis GET failed: {e}", context={"key": key}) from e

    async def set(self, key: str, value: str, ttl_ms: int | None = None) -> None:
        try:
            await self._client.set(key, value, px=ttl_ms or None)
        except RedisError as e:
            raise BackendError(f"Redis SET failed: {e}", context={"key": key}) from e

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        try:
            return bool(await self._client.set(key, value, nx=True, px=ttl_ms))
        except RedisError as e:
            raise BackendError(f"Redis SET NX failed: {e}", context={"key": key}) from e

    async def incr(self, key: str, ttl_ms: int) -> int:
        try:
            value = await self._client.incr(key)
            if value == 1:
                await self._client.pexpire(key, ttl_ms)
            return int(value)
        except RedisError as e:
            raise BackendError(f"Redis INCR failed: {e}", context={"key": key}) from e

    async def close(self) -> None:
        await self._client.aclose()


def create_kv_store(redis_url: str | None) -> KeyValueStore:
    """Redis when a URL is configured, otherwise a process-local store."""
    if redis_url:
        logger.info("Using Redis key-value store", extra={"extra_fields": {"redis": True}})
        return RedisKVStore.from_url(redis_url)
    logger.warning("REDIS_URL not set; rate limits and cache are process-local")
    return InMemoryKVStore()
