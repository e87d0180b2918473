"""
Tool definitions offered to the model and their execution.

Tool results are plain JSON-ready payloads appended verbatim to the model
context. A failing tool never raises into the loop: search failures become a
"Search Error" entry and scrape failures are reported per URL.
"""

import asyncio
from typing import Any

from api.base_client import ToolSpec
from models.errors import OperationCancelled
from models.stream import ToolCall
from tools.web.bulk_fetcher import BulkFetcher
from tools.web.contracts import BulkFetchResult, SearchResponse
from tools.web.search_provider import SearchProvider
from utils.cancellation import CancellationToken
from utils.logger import get_logger
from utils.telemetry import Telemetry, get_telemetry

logger = get_logger(__name__)

SEARCH_TOOL = ToolSpec(
    name="searchWeb",
    description="Search the web. Returns titles, links, snippets and publication dates.",
    parameters={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "The search query"},
            "num": {"type": "integer", "description": "Number of results to return", "default": 10},
        },
        "required": ["query"],
    },
)

SCRAPE_TOOL = ToolSpec(
    name="scrapePages",
    description="Fetch the full readable content of web pages as markdown.",
    parameters={
        "type": "object",
        "properties": {
            "urls": {
                "type": "array",
                "items": {"type": "string"},
                "description": "URLs to fetch",
            },
        },
        "required": ["urls"],
    },
)

TOOL_SPECS = [SEARCH_TOOL, SCRAPE_TOOL]


def search_payload(response: SearchResponse) -> list[dict[str, Any]]:
    if response.error:
        return [
            {
                "title": "Search Error",
                "link": "",
                "snippet": f"Unable to search at this time: {response.error}",
            }
        ]
    if not response.results:
        return [
            {
                "title": "No Results",
                "link": "",
                "snippet": "No search results found for this query.",
            }
        ]
    return [
        {
            "title": r.title,
            "link": r.url,
            "snippet": r.snippet,
            "date": r.published_date,
        }
        for r in response.results
    ]


def scrape_payload(result: BulkFetchResult) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "results": [
            {
                "url": o.url,
                "success": o.succeeded,
                "data": o.content if o.succeeded else o.error_message,
            }
            for o in result.outcomes
        ]
    }
    if result.error:
        payload["error"] = result.error
    return payload


class ToolExecutor:
    """
    Runs the model's tool calls against the search provider and bulk fetcher.

    Args:
        search: Search adapter behind searchWeb
        fetcher: Page fetcher behind scrapePages
        default_num_results: Result count when the model does not ask for one
        telemetry: Span source (defaults to the global OpenTelemetry tracer)
    """

    def __init__(
        self,
        search: SearchProvider,
        fetcher: BulkFetcher,
        *,
        default_num_results: int = 10,
        telemetry: Telemetry | None = None,
    ):
        self.search = search
        self.fetcher = fetcher
        self.default_num_results = default_num_results
        self.telemetry = telemetry or get_telemetry()

    async def _search_web(self, args: dict[str, Any], cancel: CancellationToken) -> Any:
        query = str(args.get("query") or "").strip()
        if not query:
            return {"error": "searchWeb requires a non-empty 'query'"}
        try:
            num = int(args.get("num") or self.default_num_results)
        except (TypeError, ValueError):
            num = self.default_num_results

        with self.telemetry.span("search-web", query=query, num_results=num) as span:
            response = await self.search.search(query, num, cancel)
            if response.error:
                self.telemetry.mark_error(span, response.error)
        return search_payload(response)

    async def _scrape_pages(self, args: dict[str, Any], cancel: CancellationToken) -> Any:
        urls = args.get("urls")
        if isinstance(urls, str):
            urls = [urls]
        if not isinstance(urls, list) or not urls:
            return {"error": "scrapePages requires a non-empty list of 'urls'"}

        with self.telemetry.span("scrape-pages", url_count=len(urls)) as span:
            result = await self.fetcher.fetch_all([str(u) for u in urls], cancel)
            if result.error:
                self.telemetry.mark_error(span, result.error)
        return scrape_payload(result)

    async def execute(self, call: ToolCall, cancel: CancellationToken) -> Any:
        """Run one tool call and return its JSON-ready result."""
        cancel.raise_if_cancelled()
        if call.name == SEARCH_TOOL.name:
            return await self._search_web(call.arguments, cancel)
        if call.name == SCRAPE_TOOL.name:
            return await self._scrape_pages(call.arguments, cancel)
        logger.warning("Model called an unknown tool", extra={"extra_fields": {"tool": call.name}})
        return {"error": f"Unknown tool: {call.name}"}

    async def execute_all(
        self, calls: tuple[ToolCall, ...] | list[ToolCall], cancel: CancellationToken
    ) -> list[tuple[ToolCall, Any]]:
        """
        Run every call of one step concurrently and join them.

        Results keep call order. An unexpected error in one call becomes that
        call's error payload; cancellation is re-raised once all calls settle.
        """
        outcomes = await asyncio.gather(
            *(self.execute(call, cancel) for call in calls),
            return_exceptions=True,
        )

        results: list[tuple[ToolCall, Any]] = []
        for call, outcome in zip(calls, outcomes):
            if isinstance(outcome, OperationCancelled):
                raise outcome
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(
                    "Tool call failed",
                    exc_info=outcome,
                    extra={"extra_fields": {"tool": call.name, "tool_call_id": call.id}},
                )
                outcome = {"error": f"{call.name} failed: {outcome}"}
            results.append((call, outcome))
        return results
