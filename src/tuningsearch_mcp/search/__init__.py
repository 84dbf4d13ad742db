"""Search module for the TuningSearch API.

This module provides the API client with retries, the response cache,
result formatting and the search service used by the MCP tools.
"""

from tuningsearch_mcp.search.base import (
    CrawlArgs,
    CrawlResponse,
    NewsArgs,
    NewsResponse,
    NewsResult,
    SafeSearch,
    SearchArgs,
    SearchResponse,
    SearchResult,
    SiteLink,
    TimeRange,
    ToolResult,
)
from tuningsearch_mcp.search.cache import (
    CacheConfig,
    CacheHealth,
    CacheKind,
    CacheStats,
    ResponseCache,
)
from tuningsearch_mcp.search.client import TuningSearchClient
from tuningsearch_mcp.search.formatter import FormatterConfig, ResultFormatter, TruncationStrategy
from tuningsearch_mcp.search.reliability import (
    RetryAttempt,
    RetryConfig,
    RetryEngine,
    RetryResult,
    calculate_delay,
    with_retry,
)
from tuningsearch_mcp.search.service import SearchService, SearchServiceConfig, SearchStats

__all__ = [
    # Models
    "CrawlArgs",
    "CrawlResponse",
    "NewsArgs",
    "NewsResponse",
    "NewsResult",
    "SafeSearch",
    "SearchArgs",
    "SearchResponse",
    "SearchResult",
    "SiteLink",
    "TimeRange",
    "ToolResult",
    # Cache
    "CacheConfig",
    "CacheHealth",
    "CacheKind",
    "CacheStats",
    "ResponseCache",
    # Reliability components
    "RetryAttempt",
    "RetryConfig",
    "RetryEngine",
    "RetryResult",
    "calculate_delay",
    "with_retry",
    # Client, formatting and service
    "FormatterConfig",
    "ResultFormatter",
    "SearchService",
    "SearchServiceConfig",
    "SearchStats",
    "TruncationStrategy",
    "TuningSearchClient",
]
