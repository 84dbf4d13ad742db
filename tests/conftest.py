"""Pytest configuration and fixtures for TuningSearch MCP tests."""

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from tuningsearch_mcp.monitoring.performance import AlertConfig, PerformanceMonitor
from tuningsearch_mcp.search.cache import CacheConfig, ResponseCache
from tuningsearch_mcp.search.client import TuningSearchClient
from tuningsearch_mcp.search.reliability import RetryConfig, RetryEngine


# =============================================================================
# Time Fixtures
# =============================================================================

class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays and advances a clock."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.calls: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock."""
    return FakeClock()


@pytest.fixture
def fake_sleep(clock: FakeClock) -> RecordingSleep:
    """Create a sleep that advances the fake clock."""
    return RecordingSleep(clock)


# =============================================================================
# Component Fixtures
# =============================================================================

@pytest.fixture
def monitor(clock: FakeClock) -> PerformanceMonitor:
    """Create a performance monitor on the fake clock."""
    return PerformanceMonitor(AlertConfig(), clock=clock, timer=clock)


@pytest.fixture
def cache(clock: FakeClock) -> ResponseCache:
    """Create a response cache on the fake clock without a sweep task."""
    return ResponseCache(CacheConfig(enable_auto_cleanup=False), clock=clock)


@pytest.fixture
def retry_config() -> RetryConfig:
    """Create a fast, deterministic retry policy."""
    return RetryConfig(max_attempts=3, initial_delay_ms=10, max_delay_ms=100, jitter=False)


@pytest.fixture
def retry_engine(retry_config: RetryConfig, fake_sleep: RecordingSleep, clock: FakeClock) -> RetryEngine:
    """Create a retry engine that never really sleeps."""
    return RetryEngine(retry_config, sleep=fake_sleep, clock=clock)


# =============================================================================
# HTTP Fixtures
# =============================================================================

def api_payload(data: dict[str, Any], success: bool = True, message: str | None = None) -> dict[str, Any]:
    """Wrap data in the upstream response envelope."""
    payload: dict[str, Any] = {"success": success, "data": data}
    if message is not None:
        payload["message"] = message
    return payload


def search_data(query: str = "python", count: int = 2) -> dict[str, Any]:
    """Build a web search data block with ``count`` results."""
    return {
        "query": query,
        "results": [
            {
                "title": f"Result {i}",
                "url": f"https://example.com/{i}",
                "content": f"Content of result {i}.",
                "position": i,
            }
            for i in range(1, count + 1)
        ],
        "suggestions": ["python tutorial"],
        "totalResults": 1000,
        "searchTime": 120,
    }


@pytest.fixture
def make_client(monitor: PerformanceMonitor, retry_engine: RetryEngine, retry_config: RetryConfig):
    """Factory fixture creating a client whose HTTP layer is a handler function."""
    def _create(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> TuningSearchClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        options: dict[str, Any] = {
            "api_key": "test-key",
            "base_url": "https://api.test/v1",
            "retry_config": retry_config,
            "retry_engine": retry_engine,
            "monitor": monitor,
            "http_client": http_client,
        }
        options.update(kwargs)
        return TuningSearchClient(**options)

    return _create


@pytest.fixture
def search_payload() -> Callable[..., dict[str, Any]]:
    """Factory fixture building a web search response body."""
    def _create(
        query: str = "python",
        count: int = 2,
        success: bool = True,
        message: str | None = None,
    ) -> dict[str, Any]:
        return api_payload(search_data(query, count), success=success, message=message)
    return _create


@pytest.fixture
def news_payload() -> Callable[..., dict[str, Any]]:
    """Factory fixture building a news search response body."""
    def _create(query: str = "python", count: int = 1) -> dict[str, Any]:
        return api_payload({
            "query": query,
            "results": [
                {
                    "title": f"News {i}",
                    "url": f"https://news.example.com/{i}",
                    "content": f"Story number {i}.",
                    "position": i,
                    "source": "Example News",
                    "publishedDate": "2024-05-01",
                }
                for i in range(1, count + 1)
            ],
        })
    return _create


@pytest.fixture
def crawl_payload() -> Callable[..., dict[str, Any]]:
    """Factory fixture building a crawl response body."""
    def _create(content: str = "Page content.") -> dict[str, Any]:
        return api_payload({"url": "https://example.com", "content": content})
    return _create
