"""Factories wiring the web tools from environment configuration."""

from config.config import Config, get_config
from utils.kv_store import KeyValueStore, create_kv_store
from utils.logger import get_logger

from .bulk_fetcher import BulkFetcher
from .cache import ResultCache
from .search_provider import SearchProvider, create_backend

logger = get_logger(__name__)

# Singleton store and cache (process-shared)
_store_instance: KeyValueStore | None = None
_cache_instance: ResultCache | None = None


def get_shared_store(config: Config | None = None) -> KeyValueStore:
    """Process-wide KeyValueStore backing both the rate limiter and the cache."""
    global _store_instance
    if _store_instance is None:
        config = config or get_config()
        _store_instance = create_kv_store(config.REDIS_URL)
    return _store_instance


def get_shared_cache(config: Config | None = None) -> ResultCache:
    global _cache_instance
    if _cache_instance is None:
        config = config or get_config()
        _cache_instance = ResultCache(
            get_shared_store(config),
            default_ttl_seconds=config.CACHE_TTL_SECONDS,
            namespace_ttls=config.NAMESPACE_TTL_SECONDS,
            key_prefix=config.CACHE_KEY_PREFIX,
        )
    return _cache_instance


def create_search_provider_from_env(
    config: Config | None = None, cache: ResultCache | None = None
) -> SearchProvider:
    """
    Create a SearchProvider for SEARCH_PROVIDER.

    Environment variables:
        SEARCH_PROVIDER: serper | brave | tavily (default: serper)
        SERPER_API_KEY / BRAVE_SEARCH_API_KEY / TAVILY_API_KEY: credential for the selected backend
        SEARCH_TIMEOUT_S: per-request timeout (default: 10)

    Raises:
        ConfigError: If the selected backend's API key is not set
    """
    config = config or get_config()
    backend = create_backend(config.SEARCH_PROVIDER, config.search_api_key())
    logger.info(
        "Using web search backend",
        extra={"extra_fields": {"backend": backend.name}},
    )
    return SearchProvider(
        backend,
        cache or get_shared_cache(config),
        timeout_s=config.SEARCH_TIMEOUT_S,
    )


def create_bulk_fetcher_from_env(
    config: Config | None = None, cache: ResultCache | None = None
) -> BulkFetcher:
    config = config or get_config()
    return BulkFetcher(
        cache or get_shared_cache(config),
        concurrency=config.FETCH_CONCURRENCY,
        timeout_s=config.FETCH_TIMEOUT_S,
        max_retries=config.FETCH_MAX_RETRIES,
        user_agent=config.FETCH_USER_AGENT,
    )


async def close_shared_store() -> None:
    global _store_instance, _cache_instance
    if _store_instance is not None:
        await _store_instance.close()
    _store_instance = None
    _cache_instance = None
