"""Data contracts for the web research tools."""

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class SearchResult:
    """One organic result, normalized across search backends."""

    title: str
    url: str
    snippet: str = ""
    published_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchResult":
        return cls(
            title=data.get("title", ""),
            url=data.get("url", ""),
            snippet=data.get("snippet", ""),
            published_date=data.get("published_date"),
        )


@dataclass(frozen=True)
class SearchResponse:
    """Ordered results for one query; `error` is set (and results empty) when the upstream failed."""

    query: str
    results: list[SearchResult] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class FetchOutcome:
    """Terminal result of fetching one URL."""

    url: str
    succeeded: bool
    content: str | None = None
    error_message: str | None = None

    @classmethod
    def success(cls, url: str, content: str) -> "FetchOutcome":
        return cls(url=url, succeeded=True, content=content)

    @classmethod
    def failure(cls, url: str, error_message: str) -> "FetchOutcome":
        return cls(url=url, succeeded=False, error_message=error_message)


@dataclass(frozen=True)
class BulkFetchResult:
    """Outcomes in input order; all_succeeded is the AND over outcomes."""

    outcomes: list[FetchOutcome] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return all(outcome.succeeded for outcome in self.outcomes)

    @property
    def succeeded(self) -> list[FetchOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> list[FetchOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def error(self) -> str | None:
        """Summary of failed URLs, one per line, or None when everything succeeded."""
        if self.all_succeeded:
            return None
        lines = [f"{o.url}: {o.error_message}" for o in self.failed]
        return "Failed to crawl some websites:\n" + "\n".join(lines)
