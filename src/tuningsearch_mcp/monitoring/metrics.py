"""Prometheus metrics for the TuningSearch MCP server."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager

import psutil
from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

# =============================================================================
# Upstream API Metrics
# =============================================================================

tuningsearch_api_requests_total = Counter(
    "tuningsearch_api_requests_total",
    "Total number of upstream API attempts",
    ["operation", "status"],
)

tuningsearch_api_request_duration_seconds = Histogram(
    "tuningsearch_api_request_duration_seconds",
    "Time spent on a single upstream API attempt",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0],
)

tuningsearch_retries_total = Counter(
    "tuningsearch_retries_total",
    "Total number of retry backoffs",
    ["code"],  # Error code that triggered the retry
)

tuningsearch_errors_total = Counter(
    "tuningsearch_errors_total",
    "Total number of errors surfaced to callers",
    ["code", "component"],
)

# =============================================================================
# Tool Metrics
# =============================================================================

tuningsearch_tool_calls_total = Counter(
    "tuningsearch_tool_calls_total",
    "Total number of MCP tool calls",
    ["tool", "status"],
)

tuningsearch_tool_duration_seconds = Histogram(
    "tuningsearch_tool_duration_seconds",
    "Time spent handling MCP tool calls",
    ["tool"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

# =============================================================================
# Cache Metrics
# =============================================================================

tuningsearch_cache_lookups_total = Counter(
    "tuningsearch_cache_lookups_total",
    "Total number of cache lookups",
    ["result"],  # hit or miss
)

tuningsearch_cache_evictions_total = Counter(
    "tuningsearch_cache_evictions_total",
    "Total number of LRU evictions",
)

tuningsearch_cache_entries = Gauge(
    "tuningsearch_cache_entries",
    "Number of entries currently held in the response cache",
)

# =============================================================================
# Health Metrics
# =============================================================================

tuningsearch_health_status = Gauge(
    "tuningsearch_health_status",
    "Health status (0=healthy, 1=warning, 2=critical, 3=unknown)",
    ["component"],  # "overall" for the aggregate
)

# =============================================================================
# System Metrics
# =============================================================================

system_cpu_percent = Gauge(
    "system_cpu_percent",
    "System CPU usage percentage",
)

system_memory_percent = Gauge(
    "system_memory_percent",
    "System memory usage percentage",
)

process_memory_rss_bytes = Gauge(
    "tuningsearch_process_memory_rss_bytes",
    "Resident memory of the server process",
)


# =============================================================================
# Helpers and Context Managers
# =============================================================================

@asynccontextmanager
async def _observe(counter: Counter, histogram: Histogram, **labels: str):
    """Count one outcome and observe its duration under ``labels``."""
    started = time.perf_counter()
    outcome = "success"
    try:
        yield
    except BaseException:
        outcome = "error"
        raise
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - started)
        counter.labels(status=outcome, **labels).inc()


def track_api_request(operation: str):
    """Time one upstream attempt (search, news or crawl)."""
    return _observe(
        tuningsearch_api_requests_total,
        tuningsearch_api_request_duration_seconds,
        operation=operation,
    )


def track_tool_call(tool: str):
    """Time one MCP tool call, counting it as success or error."""
    return _observe(tuningsearch_tool_calls_total, tuningsearch_tool_duration_seconds, tool=tool)


def track_error(code: str, component: str) -> None:
    """Track an error surfaced to a caller.

    Args:
        code: The error code.
        component: The component where the error occurred.
    """
    tuningsearch_errors_total.labels(code=code, component=component).inc()


def record_retry(code: str) -> None:
    """Count one retry backoff triggered by ``code``."""
    tuningsearch_retries_total.labels(code=code).inc()


def record_cache_lookup(hit: bool) -> None:
    """Count one cache lookup."""
    tuningsearch_cache_lookups_total.labels(result="hit" if hit else "miss").inc()


def record_cache_eviction() -> None:
    tuningsearch_cache_evictions_total.inc()


def set_cache_size(size: int) -> None:
    tuningsearch_cache_entries.set(size)


def set_health_status(component: str, value: int) -> None:
    """Export a component's health as a numeric gauge value."""
    tuningsearch_health_status.labels(component=component).set(value)


def update_system_metrics() -> None:
    """Update system resource metrics."""
    try:
        system_cpu_percent.set(psutil.cpu_percent(interval=None))
        system_memory_percent.set(psutil.virtual_memory().percent)
        process_memory_rss_bytes.set(psutil.Process().memory_info().rss)
    except psutil.Error as e:
        logger.warning(f"Failed to update system metrics: {e}")


class MetricsServer:
    """Server for exposing Prometheus metrics."""

    def __init__(self, port: int = 9464, host: str = "127.0.0.1", update_interval: float = 15.0) -> None:
        """Initialize the metrics server.

        Args:
            port: The port to expose metrics on.
            host: The address to bind.
            update_interval: Seconds between system metrics refreshes.
        """
        self.port = port
        self.host = host
        self.update_interval = update_interval
        self._running = False
        self._system_metrics_task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the metrics HTTP endpoint and the system metrics updater."""
        if self._running:
            logger.warning("Metrics server is already running")
            return

        try:
            start_http_server(self.port, addr=self.host)
        except OSError as e:
            logger.error(f"Failed to start metrics server on {self.host}:{self.port}: {e}")
            return

        self._running = True
        logger.info(f"Metrics server started on {self.host}:{self.port}")
        self._start_system_metrics_updater()

    def _start_system_metrics_updater(self) -> None:
        """Start periodic system metrics updates."""

        async def update_loop() -> None:
            while self._running:
                update_system_metrics()
                await asyncio.sleep(self.update_interval)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop, metrics will only refresh on demand
            return
        self._system_metrics_task = loop.create_task(update_loop())

    def stop(self) -> None:
        """Stop the system metrics updater.

        The prometheus_client HTTP thread is a daemon and exits with the process.
        """
        self._running = False
        if self._system_metrics_task:
            self._system_metrics_task.cancel()
            self._system_metrics_task = None
        logger.info("Metrics server stopped")
