"""Rendering of TuningSearch responses as plain text for tool callers."""

import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit

from tuningsearch_mcp.search.base import (
    CrawlResponse,
    NewsResponse,
    NewsResult,
    SearchResponse,
    SearchResult,
)

CACHED_MARKER = "[Cached result]"


class TruncationStrategy(str, Enum):
    """Where long content may be cut."""

    SENTENCE = "sentence"
    WORD = "word"
    CHARACTER = "character"


@dataclass
class FormatterConfig:
    """Result formatter configuration.

    Attributes:
        max_content_length: Maximum characters of content per result.
        max_results: Maximum number of results rendered.
        include_positions: Whether results are numbered.
        include_domain: Whether each result shows its domain.
        truncation: Truncation strategy for long content.
        crawl_content_multiplier: Crawled pages may be this many times longer.
    """

    max_content_length: int = 300
    max_results: int = 10
    include_positions: bool = True
    include_domain: bool = False
    truncation: TruncationStrategy = TruncationStrategy.SENTENCE
    crawl_content_multiplier: int = 20


def extract_domain(url: str) -> str:
    """Return the host of a URL without a leading ``www.``."""
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    return host.removeprefix("www.")


def truncate(content: str, max_length: int, strategy: TruncationStrategy = TruncationStrategy.SENTENCE) -> str:
    """Shorten ``content`` to about ``max_length`` characters.

    Args:
        content: Text to shorten.
        max_length: Maximum length before an ellipsis is added.
        strategy: Cut at sentence ends, word boundaries or anywhere.

    Returns:
        The original text if short enough, otherwise a shortened version.
    """
    if len(content) <= max_length:
        return content

    if strategy == TruncationStrategy.SENTENCE:
        result = ""
        for sentence in re.findall(r"[^.!?]+[.!?]+", content):
            if len(result) + len(sentence) > max_length:
                break
            result += sentence
        if result.strip():
            return result.strip()
        strategy = TruncationStrategy.WORD

    if strategy == TruncationStrategy.WORD:
        cut = content[: max_length + 1].rsplit(" ", 1)[0]
        if cut and len(cut) <= max_length:
            return cut.rstrip() + "..."

    return content[:max_length] + "..."


class ResultFormatter:
    """Formats search, news and crawl responses."""

    def __init__(self, config: FormatterConfig | None = None) -> None:
        self.config = config or FormatterConfig()

    def _truncate(self, content: str, max_length: int | None = None) -> str:
        return truncate(content, max_length or self.config.max_content_length, self.config.truncation)

    def _prefix(self, index: int) -> str:
        return f"{index}. " if self.config.include_positions else ""

    def format_search_result(self, result: SearchResult, index: int) -> str:
        lines = [
            f"{self._prefix(index)}{result.title}",
            f"   {result.url}",
            f"   {self._truncate(result.content)}",
        ]
        if self.config.include_domain:
            lines.append(f"   Domain: {extract_domain(result.url)}")
        for link in result.sitelinks:
            lines.append(f"   - {link.title}: {link.url}")
        return "\n".join(lines)

    def format_news_result(self, result: NewsResult, index: int) -> str:
        lines = [f"{self._prefix(index)}{result.title}", f"   {result.url}"]
        source_info = []
        if result.source:
            source_info.append(f"Source: {result.source}")
        if result.published_date:
            source_info.append(f"Date: {result.published_date}")
        if source_info:
            lines.append("   " + " | ".join(source_info))
        lines.append(f"   {self._truncate(result.content)}")
        return "\n".join(lines)

    def format_search_response(self, response: SearchResponse, query: str, cached: bool = False) -> str:
        """Render a web search response.

        Args:
            response: Parsed upstream response.
            query: The query as the caller sent it.
            cached: Whether the response was served from the cache.

        Returns:
            Numbered results, suggestions and a summary line.
        """
        results = response.results[: self.config.max_results]
        if not results:
            text = f'No results found for "{query}"'
        else:
            blocks = [self.format_search_result(r, i) for i, r in enumerate(results, 1)]
            text = "\n\n".join(blocks)
            if response.suggestions:
                text += "\n\nRelated searches: " + ", ".join(response.suggestions)
            text += "\n\n" + self._footer("results", len(results), response.query or query,
                                          response.total_results, response.search_time)
        return self._mark_cached(text, cached)

    def format_news_response(self, response: NewsResponse, query: str, cached: bool = False) -> str:
        """Render a news search response."""
        results = response.results[: self.config.max_results]
        if not results:
            text = f'No news found for "{query}"'
        else:
            blocks = [self.format_news_result(r, i) for i, r in enumerate(results, 1)]
            text = "\n\n".join(blocks)
            text += "\n\n" + self._footer("news results", len(results), response.query or query,
                                          response.total_results, response.search_time)
        return self._mark_cached(text, cached)

    def format_crawl_response(self, response: CrawlResponse, url: str, cached: bool = False) -> str:
        """Render a crawled page."""
        limit = self.config.max_content_length * self.config.crawl_content_multiplier
        content = self._truncate(response.content, limit) if response.content else "(no content)"
        text = f"Crawled content from {url}\n\n{content}"
        return self._mark_cached(text, cached)

    @staticmethod
    def _footer(
        label: str,
        count: int,
        query: str,
        total: int | None,
        search_time: float | None,
    ) -> str:
        parts = [f'Found {count} {label} for "{query}"']
        if total:
            parts.append(f"Total available: {total}")
        if search_time:
            parts.append(f"Search time: {search_time:g}ms")
        return " | ".join(parts)

    @staticmethod
    def _mark_cached(text: str, cached: bool) -> str:
        return f"{text}\n\n{CACHED_MARKER}" if cached else text
