"""Search service: validation, caching and formatting around the API client."""

import dataclasses
import ipaddress
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TypeVar
from urllib.parse import urlsplit

from tuningsearch_mcp.error_handler import ErrorHandler
from tuningsearch_mcp.exceptions import SecurityError, ServerError, ValidationError
from tuningsearch_mcp.monitoring.performance import PerformanceMonitor, PerformanceSummary
from tuningsearch_mcp.search.base import (
    CrawlArgs,
    CrawlResponse,
    NewsArgs,
    NewsResponse,
    SafeSearch,
    SearchArgs,
    SearchResponse,
    TimeRange,
    ToolResult,
)
from tuningsearch_mcp.search.cache import CacheHealth, CacheKind, CacheStats, ResponseCache
from tuningsearch_mcp.search.client import TuningSearchClient, is_http_url
from tuningsearch_mcp.search.formatter import ResultFormatter

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass
class SearchServiceConfig:
    """Business rules applied before calling the API.

    Attributes:
        max_query_length: Longest accepted query.
        max_page: Highest accepted result page.
        allowed_time_ranges: Accepted time range filters.
        allowed_safe_levels: Accepted safe search levels.
        enable_preprocessing: Trim queries and fill in default page/safe values.
        enable_result_validation: Reject responses flagged unsuccessful.
        enable_cache: Serve repeated requests from the response cache.
    """

    max_query_length: int = 500
    max_page: int = 100
    allowed_time_ranges: tuple[str, ...] = tuple(t.value for t in TimeRange)
    allowed_safe_levels: tuple[int, ...] = tuple(s.value for s in SafeSearch)
    enable_preprocessing: bool = True
    enable_result_validation: bool = True
    enable_cache: bool = True


@dataclass
class SearchStats:
    """Counters over all logical calls handled by the service."""

    total_searches: int = 0
    total_news_searches: int = 0
    total_crawls: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    cached_responses: int = 0
    average_response_time_ms: float = 0.0
    last_request_time: datetime | None = None

    @property
    def total_requests(self) -> int:
        return self.total_searches + self.total_news_searches + self.total_crawls

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["total_requests"] = self.total_requests
        data["last_request_time"] = self.last_request_time.isoformat() if self.last_request_time else None
        return data


def is_forbidden_host(hostname: str) -> bool:
    """Whether a crawl target points at the local machine or a private network."""
    host = hostname.lower().rstrip(".")
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return address.is_loopback or address.is_private or address.is_link_local or address.is_unspecified


class SearchService:
    """Entry point for the search, news and crawl tools.

    Tool calls never raise for domain errors: failures come back as an error
    ToolResult carrying the formatted message.

    Args:
        client: API client.
        cache: Response cache.
        monitor: Performance monitor for logical-call timings.
        formatter: Result formatter.
        error_handler: Error logger and formatter.
        config: Business rules.
    """

    def __init__(
        self,
        client: TuningSearchClient,
        cache: ResponseCache,
        monitor: PerformanceMonitor,
        formatter: ResultFormatter | None = None,
        error_handler: ErrorHandler | None = None,
        config: SearchServiceConfig | None = None,
    ) -> None:
        self.client = client
        self.cache = cache
        self.monitor = monitor
        self.formatter = formatter or ResultFormatter()
        self.error_handler = error_handler or ErrorHandler()
        self.config = config or SearchServiceConfig()
        self._stats = SearchStats()

    # =========================================================================
    # Tool operations
    # =========================================================================

    async def perform_search(self, args: SearchArgs) -> ToolResult:
        """Run a web search and render it as text."""
        self._stats.total_searches += 1

        def prepare() -> SearchArgs:
            self._validate_search(args)
            return self._preprocess_search(args)

        async def fetch(prepared: SearchArgs) -> SearchResponse:
            response = await self.client.search(prepared)
            self._check_success(response.success, response.message, "Search")
            return response

        return await self._run(
            operation="search",
            kind=CacheKind.SEARCH,
            context=f'search query: "{args.q}"',
            prepare=prepare,
            fetch=fetch,
            render=lambda prepared, response, cached: self.formatter.format_search_response(
                response, prepared.q, cached
            ),
        )

    async def perform_news_search(self, args: NewsArgs) -> ToolResult:
        """Run a news search and render it as text."""
        self._stats.total_news_searches += 1

        def prepare() -> NewsArgs:
            self._validate_news(args)
            return self._preprocess_news(args)

        async def fetch(prepared: NewsArgs) -> NewsResponse:
            response = await self.client.search_news(prepared)
            self._check_success(response.success, response.message, "News search")
            return response

        return await self._run(
            operation="news_search",
            kind=CacheKind.NEWS,
            context=f'news query: "{args.q}"',
            prepare=prepare,
            fetch=fetch,
            render=lambda prepared, response, cached: self.formatter.format_news_response(
                response, prepared.q, cached
            ),
        )

    async def perform_crawl(self, args: CrawlArgs) -> ToolResult:
        """Crawl a page and render its content as text."""
        self._stats.total_crawls += 1

        def prepare() -> CrawlArgs:
            prepared = dataclasses.replace(args, url=(args.url or "").strip())
            self._validate_crawl(prepared)
            return prepared

        async def fetch(prepared: CrawlArgs) -> CrawlResponse:
            response = await self.client.crawl(prepared)
            self._check_success(response.success, response.message, "Crawl")
            return response

        return await self._run(
            operation="crawl",
            kind=CacheKind.CRAWL,
            context=f'crawl URL: "{args.url}"',
            prepare=prepare,
            fetch=fetch,
            render=lambda prepared, response, cached: self.formatter.format_crawl_response(
                response, prepared.url, cached
            ),
        )

    async def _run(
        self,
        operation: str,
        kind: CacheKind,
        context: str,
        prepare: Callable[[], Any],
        fetch: Callable[[Any], Awaitable[R]],
        render: Callable[[Any, R, bool], str],
    ) -> ToolResult:
        """Validate, serve from cache or fetch, and render one logical call."""
        self._stats.last_request_time = datetime.now(timezone.utc)
        stop = self.monitor.start_operation(operation)
        try:
            prepared = prepare()
            if self.config.enable_cache:
                response, cached = await self.cache.load_kind(
                    kind, prepared.to_params(), lambda: fetch(prepared)
                )
            else:
                response, cached = await fetch(prepared), False
            text = render(prepared, response, cached)
        except Exception as e:
            self._record(stop(False), success=False)
            return ToolResult(self.error_handler.create_user_message(e, context, operation), is_error=True)

        self._record(stop(True), success=True)
        if cached:
            self._stats.cached_responses += 1
        return ToolResult(text)

    # =========================================================================
    # Validation and preprocessing
    # =========================================================================

    def _validate_query_rules(self, q: str, page: int | None, time_range: str | None) -> list[str]:
        problems = []
        if not isinstance(q, str) or not q.strip():
            problems.append("Search query is required")
        elif len(q) > self.config.max_query_length:
            problems.append(f"Query length exceeds maximum of {self.config.max_query_length} characters")
        if page is not None and not 1 <= page <= self.config.max_page:
            problems.append(f"Page number must be between 1 and {self.config.max_page}")
        if time_range is not None and time_range not in self.config.allowed_time_ranges:
            problems.append(f"Time range must be one of: {', '.join(self.config.allowed_time_ranges)}")
        return problems

    def _validate_search(self, args: SearchArgs) -> None:
        problems = self._validate_query_rules(args.q, args.page, args.time_range)
        if args.safe is not None and args.safe not in self.config.allowed_safe_levels:
            levels = ", ".join(str(level) for level in self.config.allowed_safe_levels)
            problems.append(f"Safe search level must be one of: {levels}")
        if problems:
            raise ValidationError("Search argument validation failed", problems)

    def _validate_news(self, args: NewsArgs) -> None:
        problems = self._validate_query_rules(args.q, args.page, args.time_range)
        if problems:
            raise ValidationError("News search argument validation failed", problems)

    @staticmethod
    def _validate_crawl(args: CrawlArgs) -> None:
        if not is_http_url(args.url):
            raise ValidationError("Crawl argument validation failed", ["URL must be a valid HTTP or HTTPS URL"])
        hostname = urlsplit(args.url).hostname or ""
        if is_forbidden_host(hostname):
            raise SecurityError("Crawl target rejected", ["Cannot crawl local or private network URLs"])

    def _preprocess_search(self, args: SearchArgs) -> SearchArgs:
        if not self.config.enable_preprocessing:
            return args
        return dataclasses.replace(
            args,
            q=args.q.strip(),
            page=args.page or 1,
            safe=args.safe if args.safe is not None else 0,
            language=args.language.lower() if args.language else None,
            country=args.country.lower() if args.country else None,
        )

    def _preprocess_news(self, args: NewsArgs) -> NewsArgs:
        if not self.config.enable_preprocessing:
            return args
        return dataclasses.replace(
            args,
            q=args.q.strip(),
            page=args.page or 1,
            language=args.language.lower() if args.language else None,
            country=args.country.lower() if args.country else None,
        )

    def _check_success(self, success: bool, message: str | None, label: str) -> None:
        if self.config.enable_result_validation and not success:
            raise ServerError(f"{label} failed: {message or 'upstream reported failure'}", status_code=400)

    # =========================================================================
    # Statistics
    # =========================================================================

    def _record(self, duration_ms: float, success: bool) -> None:
        if success:
            self._stats.successful_requests += 1
        else:
            self._stats.failed_requests += 1
        completed = self._stats.successful_requests + self._stats.failed_requests
        self._stats.average_response_time_ms += (
            duration_ms - self._stats.average_response_time_ms
        ) / completed

    def get_stats(self) -> SearchStats:
        return dataclasses.replace(self._stats)

    def reset_stats(self) -> None:
        self._stats = SearchStats()

    def get_cache_stats(self) -> dict[str, Any]:
        return self.cache.get_stats().to_dict()

    async def test_connection(self) -> bool:
        return await self.client.test_connection()

    def clear_cache(self) -> None:
        self.cache.clear()

    def cleanup_cache(self) -> int:
        return self.cache.cleanup()

    def invalidate_search_cache(self) -> int:
        return self.cache.invalidate_search_cache()

    def invalidate_news_cache(self) -> int:
        return self.cache.invalidate_news_cache()

    def invalidate_crawl_cache(self) -> int:
        return self.cache.invalidate_crawl_cache()

    def get_health_report(self) -> dict[str, Any]:
        """Combine cache, performance and usage data with recommendations."""
        cache_health = self.cache.get_health()
        cache_stats = self.cache.get_stats()
        summary = self.monitor.get_summary()
        return {
            "overall": summary.system_health,
            "cache": cache_health.to_dict(),
            "cache_stats": cache_stats.to_dict(),
            "performance": summary.to_dict(),
            "system": self.monitor.get_system_metrics().to_dict(),
            "statistics": self._stats.to_dict(),
            "recommendations": self._recommendations(cache_health, cache_stats, summary),
        }

    @staticmethod
    def _recommendations(
        cache_health: CacheHealth,
        cache_stats: CacheStats,
        summary: PerformanceSummary,
    ) -> list[str]:
        recommendations: list[str] = []
        if cache_stats.hits + cache_stats.misses > 0 and cache_stats.hit_ratio < 0.5:
            recommendations.append("Consider increasing cache TTL to improve hit ratio")
        if cache_health.status in ("warning", "critical"):
            recommendations.extend(cache_health.recommendations)
        if summary.average_response_time_ms > 2000:
            recommendations.append(
                "Average response time is high - consider optimizing API calls or increasing cache TTL"
            )
        if summary.overall_success_rate < 0.95:
            recommendations.append(
                "Success rate is below 95% - investigate error patterns and improve error handling"
            )
        if summary.active_alerts > 0:
            recommendations.append(
                f"{summary.active_alerts} active performance alerts - review and address issues"
            )
        memory_mb = cache_stats.memory_usage / (1024 * 1024)
        if memory_mb > 50:
            recommendations.append(
                f"Cache memory usage is {memory_mb:.1f}MB - consider reducing cache size or TTL"
            )
        return recommendations
