"""Data models for TuningSearch requests and responses."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def _unwrap(data: dict[str, Any], defaults: dict[str, Any]) -> tuple[bool, dict[str, Any]]:
    """Split the response envelope. Failed responses may omit the data block."""
    success = bool(data["success"])
    if success:
        return success, data["data"]
    return success, {**defaults, **(data.get("data") or {})}


class TimeRange(str, Enum):
    """Time filter for search and news results."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class SafeSearch(int, Enum):
    """Safe search levels accepted by the upstream API."""

    OFF = 0
    MODERATE = 1
    STRICT = 2


@dataclass
class SearchArgs:
    """Arguments of a web search call.

    Attributes:
        q: Search query.
        language: Optional language code (e.g. "en").
        country: Optional country code (e.g. "us").
        page: Result page, 1-based.
        safe: Safe search level, 0-2.
        time_range: Optional time filter (day, week, month, year).
        service: Optional upstream service selector.
    """

    q: str
    language: str | None = None
    country: str | None = None
    page: int | None = None
    safe: int | None = None
    time_range: str | None = None
    service: str | None = None

    def to_params(self) -> dict[str, Any]:
        """Convert to upstream query parameters."""
        return {
            "q": self.q,
            "language": self.language,
            "country": self.country,
            "page": self.page,
            "safe": self.safe,
            "timeRange": self.time_range,
            "service": self.service,
        }


@dataclass
class NewsArgs:
    """Arguments of a news search call. Same as SearchArgs without safe search."""

    q: str
    language: str | None = None
    country: str | None = None
    page: int | None = None
    time_range: str | None = None
    service: str | None = None

    def to_params(self) -> dict[str, Any]:
        """Convert to upstream query parameters."""
        return {
            "q": self.q,
            "language": self.language,
            "country": self.country,
            "page": self.page,
            "timeRange": self.time_range,
            "service": self.service,
        }


@dataclass
class CrawlArgs:
    """Arguments of a page crawl call."""

    url: str
    service: str | None = None

    def to_params(self) -> dict[str, Any]:
        """Convert to upstream query parameters."""
        return {"url": self.url, "service": self.service}


@dataclass
class SiteLink:
    """A sub-link shown under a search result."""

    title: str
    url: str


@dataclass
class SearchResult:
    """A single web search result."""

    title: str
    url: str
    content: str
    position: int
    sitelinks: list[SiteLink] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchResult":
        """Create SearchResult from an upstream result object."""
        return cls(
            title=str(data["title"]),
            url=str(data["url"]),
            content=str(data.get("content") or ""),
            position=int(data.get("position") or 0),
            sitelinks=[
                SiteLink(title=str(link["title"]), url=str(link["url"]))
                for link in data.get("sitelinks") or []
            ],
        )


@dataclass
class NewsResult:
    """A single news search result."""

    title: str
    url: str
    content: str
    position: int
    published_date: str | None = None
    source: str | None = None
    image_url: str | None = None
    category: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NewsResult":
        """Create NewsResult from an upstream result object."""
        return cls(
            title=str(data["title"]),
            url=str(data["url"]),
            content=str(data.get("content") or ""),
            position=int(data.get("position") or 0),
            published_date=data.get("publishedDate"),
            source=data.get("source"),
            image_url=data.get("imageUrl"),
            category=data.get("category"),
        )


@dataclass
class SearchResponse:
    """Upstream response to a web search.

    Attributes:
        success: Upstream success flag.
        results: Parsed search results.
        query: Query echoed by the upstream.
        suggestions: Related query suggestions.
        total_results: Total number of available results.
        search_time: Upstream search time in milliseconds.
        message: Optional upstream message.
        code: Optional upstream status code string.
    """

    success: bool
    results: list[SearchResult]
    query: str | None = None
    suggestions: list[str] = field(default_factory=list)
    total_results: int | None = None
    search_time: float | None = None
    message: str | None = None
    code: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchResponse":
        """Create SearchResponse from the decoded JSON body.

        Raises:
            KeyError: If a required field is missing.
            TypeError: If a field has the wrong shape.
            ValueError: If a numeric field cannot be parsed.
        """
        success, payload = _unwrap(data, {"results": []})
        return cls(
            success=success,
            results=[SearchResult.from_dict(item) for item in payload["results"]],
            query=payload.get("query"),
            suggestions=[str(s) for s in payload.get("suggestions") or []],
            total_results=payload.get("totalResults"),
            search_time=payload.get("searchTime"),
            message=data.get("message"),
            code=data.get("code"),
        )


@dataclass
class NewsResponse:
    """Upstream response to a news search."""

    success: bool
    results: list[NewsResult]
    query: str | None = None
    total_results: int | None = None
    search_time: float | None = None
    message: str | None = None
    code: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NewsResponse":
        """Create NewsResponse from the decoded JSON body."""
        success, payload = _unwrap(data, {"results": []})
        return cls(
            success=success,
            results=[NewsResult.from_dict(item) for item in payload["results"]],
            query=payload.get("query"),
            total_results=payload.get("totalResults"),
            search_time=payload.get("searchTime"),
            message=data.get("message"),
            code=data.get("code"),
        )


@dataclass
class CrawlResponse:
    """Upstream response to a page crawl."""

    success: bool
    content: str
    message: str | None = None
    code: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CrawlResponse":
        """Create CrawlResponse from the decoded JSON body."""
        success, payload = _unwrap(data, {"content": ""})
        return cls(
            success=success,
            content=str(payload["content"]),
            message=data.get("message"),
            code=data.get("code"),
        )


@dataclass
class ToolResult:
    """Text result handed back to the tool caller.

    Attributes:
        text: Rendered result or error text.
        is_error: Whether the call failed.
    """

    text: str
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to the MCP tool response shape."""
        return {
            "content": [{"type": "text", "text": self.text}],
            "isError": self.is_error,
        }
