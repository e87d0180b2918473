"""
Concurrent page fetching with per-URL failure isolation.

Every URL ends with exactly one FetchOutcome. Network errors, bad statuses,
timeouts, robots.txt refusals, unsupported content and extraction failures
are all failure outcomes; none of them aborts sibling fetches. Successful
extractions are cached under the "crawl" namespace, failures never are.
"""

import asyncio
import time
import urllib.robotparser
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import httpx

from models.errors import OperationCancelled, UpstreamError
from utils.cancellation import CancellationToken
from utils.logger import get_logger

from .cache import ResultCache
from .contracts import BulkFetchResult, FetchOutcome
from .extraction import ExtractionError, extract_article_text, is_supported_content_type

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 5
DEFAULT_TIMEOUT_S = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_USER_AGENT = "DeepSearchBot/1.0"
MIN_DELAY_MS = 500
MAX_DELAY_MS = 8000
RETRYABLE_STATUSES = {408, 425, 429, 500, 502, 503, 504}


def backoff_delay_ms(attempt: int) -> int:
    """Delay before retry number `attempt` (1-based): 500ms, 1s, 2s, ... capped at 8s."""
    return min(MIN_DELAY_MS * 2 ** (attempt - 1), MAX_DELAY_MS)


class BulkFetcher:
    """
    Fetches pages concurrently and returns readable markdown per URL.

    Args:
        cache: Result cache used for page content and robots.txt
        http_client: Optional shared client (tests inject one with a MockTransport)
        concurrency: Maximum simultaneous page fetches per fetch_all() call
        timeout_s: Per-request timeout
        max_retries: Attempts per URL for connection errors and retryable statuses
        user_agent: Sent with every request and matched against robots.txt
        respect_robots: Consult robots.txt before fetching
        sleep: Coroutine used for backoff (injectable for tests)
    """

    def __init__(
        self,
        cache: ResultCache,
        *,
        http_client: httpx.AsyncClient | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        respect_robots: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.timeout_s = timeout_s
        self.max_retries = max(1, max_retries)
        self.user_agent = user_agent
        self.respect_robots = respect_robots
        self._http_client = http_client
        self._sleep = sleep
        self._cached_crawl = cache.memoize("crawl", self._crawl)
        self._cached_robots = cache.memoize("robots", self._fetch_robots)

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout_s, follow_redirects=True) as client:
            yield client

    async def _get(self, url: str) -> httpx.Response:
        async with self._client() as client:
            return await client.get(
                url,
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
                timeout=self.timeout_s,
            )

    async def _fetch_robots(self, origin: str, *, cancel: CancellationToken) -> str:
        """robots.txt body for `origin`; empty when the site has none."""
        try:
            response = await cancel.guard(self._get(f"{origin}/robots.txt"))
        except httpx.HTTPError as e:
            raise UpstreamError(f"robots.txt unreachable: {e}") from e
        if response.status_code >= 500:
            raise UpstreamError(f"robots.txt returned {response.status_code}")
        if response.status_code >= 400:
            return ""
        return response.text

    async def _allowed_by_robots(self, url: str, cancel: CancellationToken) -> bool:
        parsed = urlparse(url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        try:
            body = await self._cached_robots(origin, cancel=cancel)
        except UpstreamError as e:
            logger.debug("robots.txt unavailable, allowing", extra={"extra_fields": {"origin": origin, "error": str(e)}})
            return True
        parser = urllib.robotparser.RobotFileParser()
        parser.parse(body.splitlines())
        return parser.can_fetch(self.user_agent, url)

    async def _crawl(self, url: str, *, cancel: CancellationToken) -> str:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise UpstreamError(f"Unsupported URL: {url}")

        if self.respect_robots and not await self._allowed_by_robots(url, cancel):
            raise UpstreamError("Blocked by robots.txt")

        last_error = "unknown error"
        for attempt in range(1, self.max_retries + 1):
            cancel.raise_if_cancelled()
            try:
                response = await cancel.guard(self._get(url))
            except httpx.TimeoutException as e:
                raise UpstreamError(f"Timed out after {self.timeout_s}s", retryable=True) from e
            except httpx.HTTPError as e:
                last_error = f"Network error: {e}"
            else:
                if response.is_success:
                    content_type = response.headers.get("content-type")
                    if not is_supported_content_type(content_type):
                        raise UpstreamError(f"Unsupported content type: {content_type}")
                    return extract_article_text(response.text)

                last_error = f"{response.status_code} {response.reason_phrase}"
                if response.status_code not in RETRYABLE_STATUSES:
                    raise UpstreamError(
                        f"Failed to fetch website: {last_error}", status_code=response.status_code
                    )

            if attempt < self.max_retries:
                await self._sleep(backoff_delay_ms(attempt) / 1000)

        raise UpstreamError(f"Failed to fetch website after {self.max_retries} attempts: {last_error}")

    async def _fetch_one(
        self, url: str, semaphore: asyncio.Semaphore, cancel: CancellationToken
    ) -> FetchOutcome:
        async with semaphore:
            start = time.monotonic()
            try:
                cancel.raise_if_cancelled()
                content = await self._cached_crawl(url, cancel=cancel)
                outcome = FetchOutcome.success(url, content)
            except OperationCancelled:
                outcome = FetchOutcome.failure(url, "Cancelled")
            except (UpstreamError, ExtractionError) as e:
                outcome = FetchOutcome.failure(url, str(e))
            except Exception as e:
                logger.error(
                    "Unexpected error while fetching page",
                    exc_info=True,
                    extra={"extra_fields": {"url": url, "error_type": type(e).__name__}},
                )
                outcome = FetchOutcome.failure(url, f"Unexpected error: {e}")

            logger.info(
                "Fetched page" if outcome.succeeded else "Page fetch failed",
                extra={
                    "extra_fields": {
                        "url": url,
                        "succeeded": outcome.succeeded,
                        "error": outcome.error_message,
                        "latency_ms": int((time.monotonic() - start) * 1000),
                    }
                },
            )
            return outcome

    async def fetch_all(self, urls: list[str], cancel: CancellationToken | None = None) -> BulkFetchResult:
        """
        Fetch every URL concurrently and wait for all of them.

        Duplicate URLs are fetched once. Outcomes come back in input order.
        """
        cancel = cancel or CancellationToken()
        semaphore = asyncio.Semaphore(self.concurrency)
        unique = list(dict.fromkeys(urls))

        outcomes = await asyncio.gather(*(self._fetch_one(url, semaphore, cancel) for url in unique))
        by_url = dict(zip(unique, outcomes))
        result = BulkFetchResult(outcomes=[by_url[url] for url in urls])

        logger.info(
            "Bulk fetch complete",
            extra={
                "extra_fields": {
                    "requested": len(urls),
                    "succeeded": len(result.succeeded),
                    "failed": len(result.failed),
                }
            },
        )
        return result
