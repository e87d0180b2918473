"""Web research tools for DeepSearch."""

from .bulk_fetcher import BulkFetcher
from .cache import ResultCache
from .contracts import BulkFetchResult, FetchOutcome, SearchResponse, SearchResult
from .factory import create_bulk_fetcher_from_env, create_search_provider_from_env
from .search_provider import SearchProvider

__all__ = [
    "BulkFetchResult",
    "BulkFetcher",
    "FetchOutcome",
    "ResultCache",
    "SearchProvider",
    "SearchResponse",
    "SearchResult",
    "create_bulk_fetcher_from_env",
    "create_search_provider_from_env",
]
