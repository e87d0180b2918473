"""Namespace memoization of idempotent upstream calls over the shared key-value store."""

import dataclasses
import functools
import hashlib
import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from models.errors import BackendError, CacheBackendError
from utils.cancellation import CancellationToken
from utils.kv_store import KeyValueStore
from utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 6 * 60 * 60

# Keyword arguments that never take part in the cache key
EXCLUDED_ARGS = frozenset({"cancel", "signal"})


def _canonical(value: Any) -> Any:
    """Reduce a value to JSON-friendly primitives with a stable shape."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {k: _canonical(v) for k, v in dataclasses.asdict(value).items()}
    if hasattr(value, "model_dump"):
        return _canonical(value.model_dump())
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_canonical(v) for v in value)
    return value


def make_cache_key(prefix: str, namespace: str, args: tuple, kwargs: dict[str, Any]) -> str:
    """
    Build `prefix:namespace:<sha256>` from call arguments.

    Keyword arguments named in EXCLUDED_ARGS (the cancellation token) are
    dropped, and dict keys are sorted so structurally equal calls collide.
    """
    payload = {
        "args": _canonical(list(args)),
        "kwargs": _canonical({k: v for k, v in kwargs.items() if k not in EXCLUDED_ARGS}),
    }
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(serialized.encode("utf-8")).hexdigest()
    return f"{prefix}:{namespace}:{digest}"


class ResultCache:
    """
    Memoizes async callables per namespace.

    Store read failures fall back to calling through; write failures are
    logged and the computed value is still returned. Calls that raise or whose
    cancellation token fired are never written. Concurrent identical calls are
    not coalesced.

    Args:
        store: Shared key-value store
        default_ttl_seconds: TTL for namespaces without an override (must be > 0)
        namespace_ttls: Per-namespace TTL overrides in seconds
        key_prefix: Prefix for every cache key
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        namespace_ttls: dict[str, int] | None = None,
        key_prefix: str = "cache",
    ):
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")
        self._store = store
        self._default_ttl = default_ttl_seconds
        self._namespace_ttls = dict(namespace_ttls or {})
        self._prefix = key_prefix

    def ttl_for(self, namespace: str) -> int:
        return self._namespace_ttls.get(namespace, self._default_ttl)

    async def read(self, key: str) -> str | None:
        """
        Raises:
            CacheBackendError: the store could not be read
        """
        try:
            return await self._store.get(key)
        except BackendError as e:
            raise CacheBackendError(f"Cache read failed: {e}", context={"key": key}) from e

    async def write(self, key: str, value: str, ttl_ms: int) -> None:
        """
        Raises:
            CacheBackendError: the store could not be written
        """
        try:
            await self._store.set(key, value, ttl_ms=ttl_ms)
        except BackendError as e:
            raise CacheBackendError(f"Cache write failed: {e}", context={"key": key}) from e

    def memoize(
        self,
        namespace: str,
        fn: Callable[..., Awaitable[T]],
        *,
        encode: Callable[[T], Any] | None = None,
        decode: Callable[[Any], T] | None = None,
    ) -> Callable[..., Awaitable[T]]:
        """
        Wrap `fn` so structurally equal calls within the namespace TTL hit the cache.

        Args:
            namespace: Key prefix identifying the upstream function
            fn: Idempotent coroutine function
            encode: Value -> JSON-serializable (defaults to identity)
            decode: JSON-deserialized -> value (defaults to identity)
        """
        encode = encode or (lambda value: value)
        decode = decode or (lambda raw: raw)
        ttl_ms = self.ttl_for(namespace) * 1000

        @functools.wraps(fn)
        async def wrapped(*args, **kwargs) -> T:
            key = make_cache_key(self._prefix, namespace, args, kwargs)
            cancel: CancellationToken | None = kwargs.get("cancel")

            try:
                cached = await self.read(key)
            except CacheBackendError as e:
                logger.warning(
                    "Cache read failed, calling upstream directly",
                    extra={"extra_fields": {"namespace": namespace, "error": str(e)}},
                )
                cached = None

            if cached is not None:
                logger.debug("Cache hit", extra={"extra_fields": {"namespace": namespace}})
                return decode(json.loads(cached))

            value = await fn(*args, **kwargs)

            if cancel is not None and cancel.cancelled:
                return value

            try:
                await self.write(key, json.dumps(encode(value)), ttl_ms)
            except CacheBackendError as e:
                logger.warning(
                    "Cache write failed, returning computed value",
                    extra={"extra_fields": {"namespace": namespace, "error": str(e)}},
                )
            return value

        return wrapped
