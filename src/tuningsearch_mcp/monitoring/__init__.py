"""Monitoring module: logging, Prometheus metrics, performance tracking and health checks."""

from tuningsearch_mcp.monitoring.health import (
    ComponentHealth,
    HealthChecker,
    HealthCheckConfig,
    HealthReport,
    HealthStatus,
    HealthSummary,
)
from tuningsearch_mcp.monitoring.logging_config import LogContext, configure_logging, get_logger
from tuningsearch_mcp.monitoring.metrics import MetricsServer, track_api_request, track_error, track_tool_call
from tuningsearch_mcp.monitoring.performance import (
    AlertConfig,
    AlertSeverity,
    AlertType,
    OperationMetrics,
    PerformanceAlert,
    PerformanceMonitor,
    PerformanceSummary,
)

__all__ = [
    # Health
    "ComponentHealth",
    "HealthChecker",
    "HealthCheckConfig",
    "HealthReport",
    "HealthStatus",
    "HealthSummary",
    # Logging
    "LogContext",
    "configure_logging",
    "get_logger",
    # Metrics
    "MetricsServer",
    "track_api_request",
    "track_error",
    "track_tool_call",
    # Performance
    "AlertConfig",
    "AlertSeverity",
    "AlertType",
    "OperationMetrics",
    "PerformanceAlert",
    "PerformanceMonitor",
    "PerformanceSummary",
]
