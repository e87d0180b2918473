"""
Web search adapters.

Each backend knows how to build its HTTP request and how to read its payload;
SearchProvider adds caching, timeouts, cancellation and error conversion so
that every backend looks the same to the agent loop.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx

from models.errors import ConfigError, UpstreamError
from utils.cancellation import CancellationToken
from utils.logger import get_logger

from .cache import ResultCache
from .contracts import SearchResponse, SearchResult

logger = get_logger(__name__)

DEFAULT_NUM_RESULTS = 10
DEFAULT_TIMEOUT_S = 10.0


class SearchBackend(ABC):
    """One upstream search API."""

    name: str = ""
    api_key_setting: str = ""

    def __init__(self, api_key: str | None):
        if not api_key:
            raise ConfigError(self.api_key_setting)
        self.api_key = api_key

    @abstractmethod
    def build_request(self, client: httpx.AsyncClient, query: str, num_results: int) -> httpx.Request:
        pass

    @abstractmethod
    def normalize(self, payload: dict[str, Any]) -> list[SearchResult]:
        pass


class SerperBackend(SearchBackend):
    name = "serper"
    api_key_setting = "SERPER_API_KEY"
    url = "https://google.serper.dev/search"

    def build_request(self, client, query, num_results):
        return client.build_request(
            "POST",
            self.url,
            headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
            json={"q": query, "num": num_results, "type": "search", "engine": "google"},
        )

    def normalize(self, payload):
        return [
            SearchResult(
                title=item.get("title") or "",
                url=item.get("link") or "",
                snippet=item.get("snippet") or "",
                published_date=item.get("date"),
            )
            for item in payload.get("organic") or []
            if item.get("link")
        ]


class BraveBackend(SearchBackend):
    name = "brave"
    api_key_setting = "BRAVE_SEARCH_API_KEY"
    url = "https://api.search.brave.com/res/v1/web/search"

    def build_request(self, client, query, num_results):
        return client.build_request(
            "GET",
            self.url,
            params={"q": query, "count": str(num_results)},
            headers={
                "X-Subscription-Token": self.api_key,
                "Accept": "application/json",
                "Accept-Encoding": "gzip",
            },
        )

    def normalize(self, payload):
        web = payload.get("web") or {}
        return [
            SearchResult(
                title=item.get("title") or "",
                url=item.get("url") or "",
                snippet=item.get("description") or "",
                published_date=item.get("page_age") or item.get("age"),
            )
            for item in web.get("results") or []
            if item.get("url")
        ]


class TavilyBackend(SearchBackend):
    name = "tavily"
    api_key_setting = "TAVILY_API_KEY"
    url = "https://api.tavily.com/search"

    def build_request(self, client, query, num_results):
        return client.build_request(
            "POST",
            self.url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "query": query,
                "max_results": max(1, min(int(num_results), 20)),
                "search_depth": "basic",
                "include_answer": False,
            },
        )

    def normalize(self, payload):
        return [
            SearchResult(
                title=str(item.get("title") or "").strip() or item.get("url", ""),
                url=item.get("url") or "",
                snippet=item.get("content") or "",
                published_date=item.get("published_date"),
            )
            for item in payload.get("results") or []
            if item.get("url")
        ]


BACKENDS: dict[str, type[SearchBackend]] = {
    SerperBackend.name: SerperBackend,
    BraveBackend.name: BraveBackend,
    TavilyBackend.name: TavilyBackend,
}


def _encode_results(results: list[SearchResult]) -> list[dict[str, Any]]:
    return [r.to_dict() for r in results]


def _decode_results(raw: list[dict[str, Any]]) -> list[SearchResult]:
    return [SearchResult.from_dict(item) for item in raw]


class SearchProvider:
    """
    Cached, cancellable search over one backend.

    search() never raises for upstream trouble: HTTP errors, timeouts and
    unreadable payloads come back as SearchResponse(results=[], error=...).
    Missing credentials (ConfigError) and cancellation do propagate.
    """

    def __init__(
        self,
        backend: SearchBackend,
        cache: ResultCache,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ):
        self.backend = backend
        self.timeout_s = timeout_s
        self._http_client = http_client
        self._cached_fetch = cache.memoize(
            "search", self._fetch_from_upstream, encode=_encode_results, decode=_decode_results
        )

    async def _send(self, cancel: CancellationToken, query: str, num_results: int) -> httpx.Response:
        if self._http_client is not None:
            request = self.backend.build_request(self._http_client, query, num_results)
            return await cancel.guard(self._http_client.send(request))
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            request = self.backend.build_request(client, query, num_results)
            return await cancel.guard(client.send(request))

    async def _fetch_from_upstream(
        self, backend_name: str, query: str, num_results: int, *, cancel: CancellationToken
    ) -> list[SearchResult]:
        cancel.raise_if_cancelled()
        try:
            response = await self._send(cancel, query, num_results)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"{backend_name} search timed out", retryable=True) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"{backend_name} request failed: {e}", retryable=True) from e

        if response.status_code >= 400:
            logger.error(
                f"{backend_name} API error",
                extra={
                    "extra_fields": {
                        "status_code": response.status_code,
                        "reason": response.reason_phrase,
                        "body": response.text[:500],
                    }
                },
            )
            raise UpstreamError(
                f"{backend_name} API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                retryable=response.status_code == 429 or response.status_code >= 500,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(f"{backend_name} returned invalid JSON") from e
        if not isinstance(payload, dict):
            raise UpstreamError(f"{backend_name} returned an unexpected payload")

        try:
            results = self.backend.normalize(payload)
        except (AttributeError, TypeError, ValueError) as e:
            raise UpstreamError(f"{backend_name} returned an unexpected payload") from e
        return results[:num_results]

    async def search(
        self,
        query: str,
        num_results: int = DEFAULT_NUM_RESULTS,
        cancel: CancellationToken | None = None,
    ) -> SearchResponse:
        """
        Search the web.

        Args:
            query: Search query
            num_results: Maximum number of results
            cancel: Cancellation token (not part of the cache key)

        Returns:
            SearchResponse with ordered results, or an empty error-flagged response
        """
        cancel = cancel or CancellationToken()
        logger.info(
            "Searching web",
            extra={
                "extra_fields": {
                    "backend": self.backend.name,
                    "query": query[:100],
                    "num_results": num_results,
                }
            },
        )
        try:
            results = await self._cached_fetch(self.backend.name, query, num_results, cancel=cancel)
        except UpstreamError as e:
            logger.warning(
                "Search failed",
                extra={"extra_fields": {"backend": self.backend.name, "error": str(e)}},
            )
            return SearchResponse(query=query, results=[], error=str(e))

        logger.info(
            "Search complete",
            extra={"extra_fields": {"backend": self.backend.name, "results": len(results)}},
        )
        return SearchResponse(query=query, results=results)


def create_backend(name: str, api_key: str | None) -> SearchBackend:
    backend_cls = BACKENDS.get(name)
    if backend_cls is None:
        raise ConfigError(
            "SEARCH_PROVIDER",
            f"Unknown SEARCH_PROVIDER '{name}'. Must be one of: {', '.join(BACKENDS)}",
        )
    return backend_cls(api_key)
