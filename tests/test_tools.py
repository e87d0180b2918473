import pytest

from fakes import RecordingTelemetry, scrape_call, search_call
from models.errors import OperationCancelled
from models.stream import ToolCall
from orchestrator.tools import ToolExecutor, scrape_payload, search_payload
from tools.web.contracts import BulkFetchResult, FetchOutcome, SearchResponse, SearchResult
from utils.cancellation import CancellationToken


class StubSearch:
    def __init__(self, response=None, error=None):
        self.response = response or SearchResponse(query="q", results=[])
        self.error = error
        self.calls = []

    async def search(self, query, num_results, cancel=None):
        self.calls.append((query, num_results))
        if self.error:
            raise self.error
        return self.response


class StubFetcher:
    def __init__(self, result=None):
        self.result = result
        self.calls = []

    async def fetch_all(self, urls, cancel=None):
        self.calls.append(urls)
        return self.result


def test_search_payload_shapes():
    ok = SearchResponse(query="q", results=[SearchResult(title="T", url="https://t.test", snippet="s")])
    assert search_payload(ok) == [{"title": "T", "link": "https://t.test", "snippet": "s", "date": None}]
    assert search_payload(SearchResponse(query="q", results=[], error="boom"))[0]["title"] == "Search Error"
    assert search_payload(SearchResponse(query="q", results=[]))[0]["snippet"] == "No search results found for this query."


def test_scrape_payload_reports_each_url():
    result = BulkFetchResult(
        outcomes=[
            FetchOutcome.success("https://a.test", "# A"),
            FetchOutcome.failure("https://b.test", "Failed to fetch website: 404 Not Found"),
        ]
    )

    payload = scrape_payload(result)

    assert payload["results"] == [
        {"url": "https://a.test", "success": True, "data": "# A"},
        {"url": "https://b.test", "success": False, "data": "Failed to fetch website: 404 Not Found"},
    ]
    assert "https://b.test" in payload["error"]


@pytest.mark.asyncio
async def test_num_defaults_when_missing_or_invalid():
    search = StubSearch()
    executor = ToolExecutor(search, StubFetcher(), default_num_results=7, telemetry=RecordingTelemetry())

    await executor.execute(ToolCall(id="a", name="searchWeb", arguments={"query": "q"}), CancellationToken())
    await executor.execute(
        ToolCall(id="b", name="searchWeb", arguments={"query": "q", "num": "many"}), CancellationToken()
    )

    assert search.calls == [("q", 7), ("q", 7)]


@pytest.mark.asyncio
async def test_invalid_arguments_become_error_payloads():
    executor = ToolExecutor(StubSearch(), StubFetcher(), telemetry=RecordingTelemetry())
    token = CancellationToken()

    assert "error" in await executor.execute(ToolCall(id="a", name="searchWeb", arguments={}), token)
    assert "error" in await executor.execute(ToolCall(id="b", name="scrapePages", arguments={"urls": []}), token)


@pytest.mark.asyncio
async def test_single_url_string_is_accepted():
    fetcher = StubFetcher(BulkFetchResult(outcomes=[FetchOutcome.success("https://a.test", "A")]))
    executor = ToolExecutor(StubSearch(), fetcher, telemetry=RecordingTelemetry())

    await executor.execute(
        ToolCall(id="a", name="scrapePages", arguments={"urls": "https://a.test"}), CancellationToken()
    )

    assert fetcher.calls == [["https://a.test"]]


@pytest.mark.asyncio
async def test_unexpected_error_in_one_call_does_not_sink_the_step():
    fetcher = StubFetcher(BulkFetchResult(outcomes=[FetchOutcome.success("https://a.test", "A")]))
    executor = ToolExecutor(StubSearch(error=RuntimeError("kaboom")), fetcher, telemetry=RecordingTelemetry())

    results = await executor.execute_all(
        [search_call("q"), scrape_call(["https://a.test"])], CancellationToken()
    )

    assert results[0][1] == {"error": "searchWeb failed: kaboom"}
    assert results[1][1]["results"][0]["success"] is True


@pytest.mark.asyncio
async def test_cancellation_is_reraised():
    executor = ToolExecutor(
        StubSearch(error=OperationCancelled("client disconnected")), StubFetcher(), telemetry=RecordingTelemetry()
    )

    with pytest.raises(OperationCancelled):
        await executor.execute_all([search_call("q")], CancellationToken())


@pytest.mark.asyncio
async def test_search_error_marks_span():
    telemetry = RecordingTelemetry()
    executor = ToolExecutor(StubSearch(SearchResponse(query="q", results=[], error="down")), StubFetcher(), telemetry=telemetry)

    await executor.execute(search_call("q"), CancellationToken())

    assert telemetry.spans[0]["name"] == "search-web"
    assert telemetry.spans[0]["error"] == "down"
