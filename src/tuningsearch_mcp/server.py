"""MCP server exposing TuningSearch tools.

:class:`SearchApplication` builds every collaborator from settings and owns
their background tasks. :func:`build_server` registers the tools on a
FastMCP instance bound to one application.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Annotated, Any

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

from tuningsearch_mcp.config import Settings
from tuningsearch_mcp.error_handler import ErrorHandler
from tuningsearch_mcp.monitoring.health import (
    ComponentHealth,
    HealthChecker,
    HealthStatus,
    check_performance_health,
    check_system_health,
)
from tuningsearch_mcp.monitoring.logging_config import LogContext
from tuningsearch_mcp.monitoring.metrics import track_tool_call
from tuningsearch_mcp.monitoring.performance import PerformanceMonitor
from tuningsearch_mcp.search.base import CrawlArgs, NewsArgs, SearchArgs, ToolResult
from tuningsearch_mcp.search.cache import ResponseCache
from tuningsearch_mcp.search.client import TuningSearchClient
from tuningsearch_mcp.search.formatter import ResultFormatter
from tuningsearch_mcp.search.reliability import RetryEngine
from tuningsearch_mcp.search.service import SearchService, SearchServiceConfig

logger = logging.getLogger(__name__)

# Below this many completed calls the service probe does not judge success rates.
MIN_REQUESTS_FOR_SUCCESS_RATE = 10


class SearchApplication:
    """All long-lived server components, wired together.

    Args:
        settings: Application settings.
        monitor: Performance monitor shared by client, service and health.
        cache: Response cache.
        client: TuningSearch API client.
        service: Search service used by the tools.
        health: Health checker with the standard probes registered.
    """

    def __init__(
        self,
        settings: Settings,
        monitor: PerformanceMonitor,
        cache: ResponseCache,
        client: TuningSearchClient,
        service: SearchService,
        health: HealthChecker,
    ) -> None:
        self.settings = settings
        self.monitor = monitor
        self.cache = cache
        self.client = client
        self.service = service
        self.health = health
        self._register_probes()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SearchApplication":
        """Construct every component from settings.

        Raises:
            ApiKeyError: If no API key is configured.
        """
        monitor = PerformanceMonitor(settings.monitoring.alert_config())
        retry_config = settings.api.retry_config()
        client = TuningSearchClient(
            api_key=settings.api.api_key,
            base_url=settings.api.base_url,
            timeout_ms=settings.api.timeout,
            retry_config=retry_config,
            retry_engine=RetryEngine(retry_config),
            monitor=monitor,
        )
        cache = ResponseCache(settings.cache.cache_config())
        service = SearchService(
            client=client,
            cache=cache,
            monitor=monitor,
            formatter=ResultFormatter(),
            error_handler=ErrorHandler(),
            config=SearchServiceConfig(enable_cache=settings.cache.enabled),
        )
        health = HealthChecker(monitor, settings.health.health_config())
        return cls(settings, monitor, cache, client, service, health)

    def _register_probes(self) -> None:
        self.health.register_component("server", self.check_server)
        self.health.register_component("config", self.check_config)
        self.health.register_component("search_service", self.check_search_service)
        self.health.register_component("cache", self.check_cache)
        self.health.register_component("performance", lambda: check_performance_health(self.monitor))
        self.health.register_component("system", lambda: check_system_health(self.monitor))

    async def start(self) -> None:
        """Start the cache sweep and periodic health checks."""
        if self.settings.cache.enabled:
            self.cache.start()
        self.health.start()
        logger.info(f"{self.settings.server_name} started")

    async def stop(self) -> None:
        """Stop background tasks and close the HTTP client."""
        self.health.stop()
        self.cache.destroy()
        await self.client.aclose()
        logger.info(f"{self.settings.server_name} stopped")

    # =========================================================================
    # Probes
    # =========================================================================

    async def check_server(self) -> ComponentHealth:
        return ComponentHealth(
            name="server",
            status=HealthStatus.HEALTHY,
            message="Server is running",
            details={"name": self.settings.server_name},
        )

    async def check_config(self) -> ComponentHealth:
        if not self.settings.api.api_key:
            return ComponentHealth(
                name="config",
                status=HealthStatus.CRITICAL,
                message="TuningSearch API key is not configured",
            )
        return ComponentHealth(
            name="config",
            status=HealthStatus.HEALTHY,
            message="Configuration is valid",
            details={"base_url": self.settings.api.base_url, "cache_enabled": self.settings.cache.enabled},
        )

    async def check_search_service(self) -> ComponentHealth:
        """Probe the upstream API if enabled, otherwise judge recent calls."""
        stats = self.service.get_stats()
        details = stats.to_dict()
        if self.settings.health.check_upstream:
            if await self.service.test_connection():
                return ComponentHealth("search_service", HealthStatus.HEALTHY, "TuningSearch API reachable", details=details)
            return ComponentHealth("search_service", HealthStatus.CRITICAL, "TuningSearch API unreachable", details=details)

        completed = stats.successful_requests + stats.failed_requests
        if completed < MIN_REQUESTS_FOR_SUCCESS_RATE:
            return ComponentHealth("search_service", HealthStatus.HEALTHY, f"{completed} requests handled", details=details)
        success_rate = stats.successful_requests / completed
        if success_rate < 0.5:
            status = HealthStatus.CRITICAL
        elif success_rate < 0.9:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.HEALTHY
        return ComponentHealth(
            "search_service",
            status,
            f"Success rate {success_rate:.1%} over {completed} requests",
            details=details,
        )

    async def check_cache(self) -> ComponentHealth:
        cache_health = self.cache.get_health()
        return ComponentHealth(
            name="cache",
            status=HealthStatus(cache_health.status),
            message="; ".join(cache_health.issues) or "Cache operating normally",
            details={**cache_health.to_dict(), **self.cache.get_stats().to_dict()},
        )

    # =========================================================================
    # Observability payloads
    # =========================================================================

    async def health_payload(self) -> dict[str, Any]:
        report = await self.health.perform_health_check()
        return {
            **report.to_dict(),
            "service": self.service.get_health_report(),
        }

    def stats_payload(self) -> dict[str, Any]:
        return {
            "service": self.service.get_stats().to_dict(),
            "cache": self.service.get_cache_stats(),
            "performance": self.monitor.export_metrics(),
        }


async def run_tool(app: SearchApplication, tool: str, call: Callable[[], Awaitable[ToolResult]]) -> str:
    """Run a tool body with logging context and metrics.

    Raises:
        ToolError: If the call produced an error result.
    """
    with LogContext(tool=tool):
        async with track_tool_call(tool), app.monitor.track(f"tool_{tool}"):
            result = await call()
            if result.is_error:
                raise ToolError(result.text)
            return result.text


def build_server(app: SearchApplication) -> FastMCP:
    """Create a FastMCP server with the TuningSearch tools registered."""
    server = FastMCP(app.settings.server_name)

    @server.tool(name="tuningsearch_search")
    async def tuningsearch_search(
        q: Annotated[str, Field(description="Search query")],
        language: Annotated[str | None, Field(description="Language code, e.g. en")] = None,
        country: Annotated[str | None, Field(description="Country code, e.g. us")] = None,
        page: Annotated[int | None, Field(description="Result page, starting at 1")] = None,
        safe: Annotated[int | None, Field(description="Safe search level: 0 off, 1 moderate, 2 strict")] = None,
        time_range: Annotated[str | None, Field(description="Time range: day, week, month or year")] = None,
        service: Annotated[str | None, Field(description="Upstream search provider")] = None,
    ) -> str:
        """Search the web with TuningSearch and return numbered results."""
        args = SearchArgs(
            q=q,
            language=language,
            country=country,
            page=page,
            safe=safe,
            time_range=time_range,
            service=service,
        )
        return await run_tool(app, "tuningsearch_search", lambda: app.service.perform_search(args))

    @server.tool(name="tuningsearch_news")
    async def tuningsearch_news(
        q: Annotated[str, Field(description="News search query")],
        language: Annotated[str | None, Field(description="Language code, e.g. en")] = None,
        country: Annotated[str | None, Field(description="Country code, e.g. us")] = None,
        page: Annotated[int | None, Field(description="Result page, starting at 1")] = None,
        time_range: Annotated[str | None, Field(description="Time range: day, week, month or year")] = None,
        service: Annotated[str | None, Field(description="Upstream search provider")] = None,
    ) -> str:
        """Search recent news articles with TuningSearch."""
        args = NewsArgs(
            q=q,
            language=language,
            country=country,
            page=page,
            time_range=time_range,
            service=service,
        )
        return await run_tool(app, "tuningsearch_news", lambda: app.service.perform_news_search(args))

    @server.tool(name="tuningsearch_crawl")
    async def tuningsearch_crawl(
        url: Annotated[str, Field(description="HTTP or HTTPS URL of the page to crawl")],
        service: Annotated[str | None, Field(description="Upstream crawl provider")] = None,
    ) -> str:
        """Fetch the text content of a single web page."""
        args = CrawlArgs(url=url, service=service)
        return await run_tool(app, "tuningsearch_crawl", lambda: app.service.perform_crawl(args))

    @server.tool(name="tuningsearch_health")
    async def tuningsearch_health() -> str:
        """Run a health check and report component states and recommendations."""
        with LogContext(tool="tuningsearch_health"):
            async with track_tool_call("tuningsearch_health"):
                return json.dumps(await app.health_payload(), indent=2, default=str)

    @server.tool(name="tuningsearch_stats")
    async def tuningsearch_stats() -> str:
        """Report request statistics, cache statistics and operation timings."""
        with LogContext(tool="tuningsearch_stats"):
            async with track_tool_call("tuningsearch_stats"):
                return json.dumps(app.stats_payload(), indent=2, default=str)

    return server
