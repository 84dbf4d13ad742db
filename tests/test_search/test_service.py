"""Tests for the search service."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tuningsearch_mcp.error_handler import API_KEY_MESSAGE
from tuningsearch_mcp.exceptions import ApiKeyError, NetworkError
from tuningsearch_mcp.search.base import (
    CrawlArgs,
    CrawlResponse,
    NewsArgs,
    NewsResponse,
    NewsResult,
    SearchArgs,
    SearchResponse,
    SearchResult,
)
from tuningsearch_mcp.search.client import TuningSearchClient
from tuningsearch_mcp.search.formatter import CACHED_MARKER
from tuningsearch_mcp.search.service import SearchService, SearchServiceConfig, is_forbidden_host


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def search_response():
    """Create a successful search response."""
    return SearchResponse(
        success=True,
        results=[SearchResult(title="Python", url="https://python.org", content="The language.", position=1)],
        query="python",
    )


@pytest.fixture
def mock_client(search_response):
    """Create a mock API client."""
    client = MagicMock(spec=TuningSearchClient)
    client.search = AsyncMock(return_value=search_response)
    client.search_news = AsyncMock(return_value=NewsResponse(
        success=True,
        results=[NewsResult(title="Headline", url="https://news.example.com", content="Story.", position=1)],
    ))
    client.crawl = AsyncMock(return_value=CrawlResponse(success=True, content="Page body."))
    client.test_connection = AsyncMock(return_value=True)
    return client


@pytest.fixture
def service(mock_client, cache, monitor):
    """Create a search service over the mock client."""
    return SearchService(client=mock_client, cache=cache, monitor=monitor)


# =============================================================================
# Test Web Search
# =============================================================================

class TestPerformSearch:
    """Tests for SearchService.perform_search."""

    @pytest.mark.asyncio
    async def test_success(self, service, mock_client, monitor):
        """Test a successful search."""
        result = await service.perform_search(SearchArgs(q="python"))

        assert result.is_error is False
        assert "1. Python" in result.text
        assert CACHED_MARKER not in result.text
        mock_client.search.assert_awaited_once()
        assert service.get_stats().successful_requests == 1
        assert monitor.get_operation_metrics("search").count == 1

    @pytest.mark.asyncio
    async def test_second_call_is_cached(self, service, mock_client):
        """Test that a repeated search is served from the cache."""
        await service.perform_search(SearchArgs(q="python"))
        result = await service.perform_search(SearchArgs(q="python"))

        assert result.text.endswith(CACHED_MARKER)
        mock_client.search.assert_awaited_once()
        stats = service.get_stats()
        assert stats.total_searches == 2
        assert stats.cached_responses == 1

    @pytest.mark.asyncio
    async def test_preprocessing(self, service, mock_client):
        """Test that arguments are normalized before the call."""
        await service.perform_search(SearchArgs(q="  Python  ", language="EN", country="US"))

        sent = mock_client.search.await_args.args[0]
        assert sent.q == "Python"
        assert sent.page == 1
        assert sent.safe == 0
        assert sent.language == "en"
        assert sent.country == "us"

    @pytest.mark.asyncio
    async def test_preprocessing_shares_cache_entry(self, service, mock_client):
        """Test that equivalent queries hit the same cache entry."""
        await service.perform_search(SearchArgs(q="python"))
        result = await service.perform_search(SearchArgs(q=" python ", page=1, safe=0))

        assert result.text.endswith(CACHED_MARKER)
        mock_client.search.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "args,problem",
        [
            (SearchArgs(q=""), "Search query is required"),
            (SearchArgs(q="x" * 501), "Query length exceeds maximum of 500 characters"),
            (SearchArgs(q="python", page=101), "Page number must be between 1 and 100"),
            (SearchArgs(q="python", safe=3), "Safe search level must be one of: 0, 1, 2"),
            (SearchArgs(q="python", time_range="decade"), "Time range must be one of: day, week, month, year"),
        ],
    )
    async def test_validation(self, service, mock_client, args, problem):
        """Test that invalid arguments become error results."""
        result = await service.perform_search(args)

        assert result.is_error is True
        assert result.text.startswith("Error: Search argument validation failed")
        assert f"- {problem}" in result.text
        mock_client.search.assert_not_awaited()
        assert service.get_stats().failed_requests == 1

    @pytest.mark.asyncio
    async def test_unsuccessful_response(self, service, mock_client):
        """Test that success=false becomes a non-retryable error and is not cached."""
        mock_client.search.return_value = SearchResponse(success=False, results=[], message="quota exceeded")

        first = await service.perform_search(SearchArgs(q="python"))
        await service.perform_search(SearchArgs(q="python"))

        assert first.is_error is True
        assert "Error: Search failed: quota exceeded" in first.text
        assert "This operation can be retried." not in first.text
        assert mock_client.search.await_count == 2

    @pytest.mark.asyncio
    async def test_retryable_upstream_error(self, service, mock_client):
        """Test that retryable errors are reported as such."""
        mock_client.search.side_effect = NetworkError("connection reset")

        result = await service.perform_search(SearchArgs(q="python"))

        assert result.is_error is True
        assert "Context: search query: \"python\"" in result.text
        assert result.text.endswith("This operation can be retried.")

    @pytest.mark.asyncio
    async def test_api_key_error_message(self, service, mock_client):
        """Test that API key errors use the configuration message."""
        mock_client.search.side_effect = ApiKeyError("key abc rejected")

        result = await service.perform_search(SearchArgs(q="python"))

        assert result.text.startswith(f"Error: {API_KEY_MESSAGE}")

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, service, mock_client, monitor):
        """Test that arbitrary exceptions still produce an error result."""
        mock_client.search.side_effect = RuntimeError("surprise")

        result = await service.perform_search(SearchArgs(q="python"))

        assert result.is_error is True
        assert "surprise" in result.text
        assert monitor.get_operation_metrics("search").failure_count == 1

    @pytest.mark.asyncio
    async def test_cache_disabled(self, mock_client, cache, monitor):
        """Test that the cache can be bypassed."""
        service = SearchService(mock_client, cache, monitor, config=SearchServiceConfig(enable_cache=False))

        await service.perform_search(SearchArgs(q="python"))
        await service.perform_search(SearchArgs(q="python"))

        assert mock_client.search.await_count == 2
        assert len(cache) == 0


# =============================================================================
# Test News and Crawl
# =============================================================================

class TestNewsAndCrawl:
    """Tests for news search and crawling."""

    @pytest.mark.asyncio
    async def test_news(self, service, monitor):
        """Test a successful news search."""
        result = await service.perform_news_search(NewsArgs(q="python"))

        assert result.is_error is False
        assert "1. Headline" in result.text
        assert monitor.get_operation_metrics("news_search").count == 1
        assert service.get_stats().total_news_searches == 1

    @pytest.mark.asyncio
    async def test_news_validation(self, service, mock_client):
        """Test that news queries are validated."""
        result = await service.perform_news_search(NewsArgs(q="python", page=0))

        assert result.is_error is True
        assert "News search argument validation failed" in result.text
        mock_client.search_news.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_crawl(self, service, monitor):
        """Test a successful crawl."""
        result = await service.perform_crawl(CrawlArgs(url="https://example.com"))

        assert result.text == "Crawled content from https://example.com\n\nPage body."
        assert monitor.get_operation_metrics("crawl").count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "url",
        ["http://localhost:8080/admin", "http://127.0.0.1/", "https://192.168.1.10/router", "http://10.0.0.1"],
    )
    async def test_crawl_rejects_local_targets(self, service, mock_client, url):
        """Test that local and private network targets are refused."""
        result = await service.perform_crawl(CrawlArgs(url=url))

        assert result.is_error is True
        assert "Cannot crawl local or private network URLs" in result.text
        mock_client.crawl.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_crawl_rejects_non_http(self, service, mock_client):
        """Test that only http(s) URLs are crawled."""
        result = await service.perform_crawl(CrawlArgs(url="ftp://example.com/file"))

        assert result.is_error is True
        assert "URL must be a valid HTTP or HTTPS URL" in result.text
        mock_client.crawl.assert_not_awaited()

    @pytest.mark.parametrize(
        "host,forbidden",
        [
            ("localhost", True),
            ("api.localhost", True),
            ("127.0.0.5", True),
            ("192.168.0.1", True),
            ("::1", True),
            ("example.com", False),
            ("8.8.8.8", False),
        ],
    )
    def test_is_forbidden_host(self, host, forbidden):
        """Test host classification."""
        assert is_forbidden_host(host) is forbidden


# =============================================================================
# Test Statistics and Reports
# =============================================================================

class TestStatsAndReports:
    """Tests for statistics and the health report."""

    @pytest.mark.asyncio
    async def test_stats_and_reset(self, service):
        """Test that statistics accumulate and reset."""
        await service.perform_search(SearchArgs(q="python"))
        await service.perform_crawl(CrawlArgs(url="http://localhost"))

        stats = service.get_stats()
        assert stats.total_requests == 2
        assert stats.successful_requests == 1
        assert stats.failed_requests == 1
        assert stats.last_request_time is not None

        service.reset_stats()
        assert service.get_stats().total_requests == 0

    @pytest.mark.asyncio
    async def test_health_report(self, service):
        """Test the combined health report and its recommendations."""
        await service.perform_search(SearchArgs(q="python"))
        await service.perform_search(SearchArgs(q=""))

        report = service.get_health_report()

        assert set(report) >= {"overall", "cache", "performance", "system", "statistics", "recommendations"}
        assert report["statistics"]["total_searches"] == 2
        assert any("Success rate is below 95%" in r for r in report["recommendations"])
        assert any("cache TTL to improve hit ratio" in r for r in report["recommendations"])

    @pytest.mark.asyncio
    async def test_cache_helpers(self, service, cache):
        """Test cache invalidation helpers."""
        await service.perform_search(SearchArgs(q="python"))
        await service.perform_news_search(NewsArgs(q="python"))

        assert service.invalidate_search_cache() == 1
        assert service.invalidate_news_cache() == 1
        assert service.invalidate_crawl_cache() == 0
        assert service.get_cache_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_connection(self, service, mock_client):
        """Test the connection check passthrough."""
        assert await service.test_connection() is True
        mock_client.test_connection.assert_awaited_once()
