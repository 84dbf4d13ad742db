"""Tests for the MCP server wiring and entry point."""

import json
import logging
from unittest.mock import AsyncMock

import pytest
import structlog
from mcp.server.fastmcp.exceptions import ToolError

from tuningsearch_mcp.config import ApiSettings, CacheSettings, HealthSettings, Settings, get_settings
from tuningsearch_mcp.main import apply_overrides, main, parse_args
from tuningsearch_mcp.monitoring.health import HealthStatus
from tuningsearch_mcp.search.base import ToolResult
from tuningsearch_mcp.server import SearchApplication, build_server, run_tool


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def settings():
    """Create settings with an API key and no environment lookups that matter."""
    return Settings(
        api=ApiSettings(api_key="test-key", base_url="https://api.test/v1"),
        cache=CacheSettings(enabled=True),
        health=HealthSettings(check_upstream=False, check_interval=3600),
    )


@pytest.fixture
def app(settings):
    """Create an application from the test settings."""
    return SearchApplication.from_settings(settings)


# =============================================================================
# Test SearchApplication
# =============================================================================

class TestSearchApplication:
    """Tests for SearchApplication."""

    @pytest.mark.asyncio
    async def test_probes_registered(self, app):
        """Test that every standard probe is registered."""
        assert app.health.get_registered_components() == [
            "server",
            "config",
            "search_service",
            "cache",
            "performance",
            "system",
        ]

    @pytest.mark.asyncio
    async def test_config_probe(self, app):
        """Test the configuration probe with and without a key."""
        assert (await app.check_config()).status == HealthStatus.HEALTHY

        app.settings = app.settings.model_copy(update={"api": ApiSettings(api_key="")})
        result = await app.check_config()
        assert result.status == HealthStatus.CRITICAL
        assert result.message == "TuningSearch API key is not configured"

    @pytest.mark.asyncio
    async def test_cache_probe(self, app):
        """Test that the cache probe reports the cache status."""
        result = await app.check_cache()
        assert result.status == HealthStatus.HEALTHY
        assert result.details["size"] == 0

    @pytest.mark.asyncio
    async def test_service_probe_needs_traffic(self, app):
        """Test that few requests are not judged."""
        app.service._stats.failed_requests = 3
        result = await app.check_search_service()
        assert result.status == HealthStatus.HEALTHY
        assert result.message == "3 requests handled"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "successes,failures,expected",
        [
            (10, 0, HealthStatus.HEALTHY),
            (8, 2, HealthStatus.WARNING),
            (2, 8, HealthStatus.CRITICAL),
        ],
    )
    async def test_service_probe_success_rate(self, app, successes, failures, expected):
        """Test the success rate thresholds of the service probe."""
        app.service._stats.successful_requests = successes
        app.service._stats.failed_requests = failures
        assert (await app.check_search_service()).status == expected

    @pytest.mark.asyncio
    async def test_service_probe_upstream(self, app):
        """Test that the upstream probe uses the connection check."""
        app.settings = app.settings.model_copy(update={"health": HealthSettings(check_upstream=True)})
        app.service.test_connection = AsyncMock(return_value=False)

        result = await app.check_search_service()

        assert result.status == HealthStatus.CRITICAL
        app.service.test_connection.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_payload(self, app):
        """Test the payload returned by the health tool."""
        payload = await app.health_payload()

        assert payload["status"] in {"healthy", "warning"}
        assert set(payload["components"]) >= {"server", "config", "cache"}
        assert "recommendations" in payload["service"]
        json.dumps(payload, default=str)

    @pytest.mark.asyncio
    async def test_stats_payload(self, app):
        """Test the payload returned by the stats tool."""
        payload = app.stats_payload()
        assert set(payload) == {"service", "cache", "performance"}
        assert payload["service"]["total_searches"] == 0

    @pytest.mark.asyncio
    async def test_start_and_stop(self, app):
        """Test that background tasks start and stop."""
        await app.start()
        assert app.cache.is_running
        assert app.health.is_running

        await app.stop()
        assert not app.cache.is_running
        assert not app.health.is_running


# =============================================================================
# Test Tools
# =============================================================================

class TestTools:
    """Tests for tool registration and execution."""

    @pytest.mark.asyncio
    async def test_tools_registered(self, app):
        """Test that all tools are listed."""
        server = build_server(app)

        tools = {tool.name for tool in await server.list_tools()}

        assert tools == {
            "tuningsearch_search",
            "tuningsearch_news",
            "tuningsearch_crawl",
            "tuningsearch_health",
            "tuningsearch_stats",
        }

    @pytest.mark.asyncio
    async def test_run_tool_success(self, app):
        """Test that a successful result returns its text."""
        call = AsyncMock(return_value=ToolResult("1. Python"))
        assert await run_tool(app, "tuningsearch_search", call) == "1. Python"
        assert app.monitor.get_operation_metrics("tool_tuningsearch_search").success_count == 1

    @pytest.mark.asyncio
    async def test_run_tool_error(self, app):
        """Test that an error result is raised as a tool error."""
        call = AsyncMock(return_value=ToolResult("Error: Search query is required", is_error=True))

        with pytest.raises(ToolError, match="Search query is required"):
            await run_tool(app, "tuningsearch_search", call)

        assert app.monitor.get_operation_metrics("tool_tuningsearch_search").failure_count == 1


# =============================================================================
# Test Command Line
# =============================================================================

class TestCommandLine:
    """Tests for argument parsing and overrides."""

    def test_no_overrides(self, settings):
        """Test that settings are returned unchanged without flags."""
        assert apply_overrides(settings, parse_args([])) is settings

    def test_overrides(self, settings):
        """Test that flags override a copy of the settings."""
        args = parse_args(["--log-level", "debug", "--metrics-port", "9100"])

        updated = apply_overrides(settings, args)

        assert updated.monitoring.log_level == "DEBUG"
        assert updated.monitoring.metrics_enabled is True
        assert updated.monitoring.metrics_port == 9100
        assert settings.monitoring.metrics_enabled is False

    def test_invalid_log_level(self):
        """Test that unknown log levels are rejected."""
        with pytest.raises(SystemExit):
            parse_args(["--log-level", "loud"])

    def test_malformed_environment_exits(self, monkeypatch, capsys):
        """Test that an unparsable env value is logged as invalid configuration."""
        monkeypatch.setenv("TUNINGSEARCH_TIMEOUT", "abc")
        get_settings.cache_clear()
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        try:
            with pytest.raises(SystemExit) as exc_info:
                main([])
        finally:
            root.handlers[:] = handlers
            root.setLevel(level)
            structlog.reset_defaults()
            get_settings.cache_clear()

        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert "Invalid configuration" in err
        assert "timeout" in err
