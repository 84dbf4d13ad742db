"""Health checks for the TuningSearch MCP server.

A :class:`HealthChecker` keeps a registry of named async probes. Each check
cycle runs every probe under its own timeout and folds the results, together
with the performance monitor's recent alerts, into one overall status.
"""

import asyncio
import dataclasses
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from tuningsearch_mcp.monitoring.metrics import set_health_status
from tuningsearch_mcp.monitoring.performance import PerformanceMonitor

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health check status levels."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"

    @property
    def metric_value(self) -> int:
        """Numeric value exported to Prometheus."""
        return {
            HealthStatus.HEALTHY: 0,
            HealthStatus.WARNING: 1,
            HealthStatus.CRITICAL: 2,
            HealthStatus.UNKNOWN: 3,
        }[self]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ComponentHealth:
    """Health status of a single component, produced fresh on every check."""

    name: str
    status: HealthStatus
    message: str = ""
    last_checked: datetime = field(default_factory=_utcnow)
    details: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation.

        Returns:
            Dictionary with component health data.
        """
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "last_checked": self.last_checked.isoformat(),
            "details": dict(self.details),
        }


HealthProbe = Callable[[], Awaitable[ComponentHealth]]


@dataclass
class HealthCheckConfig:
    """Health checker configuration. Durations are in seconds."""

    enabled: bool = True
    check_interval: float = 30.0
    component_timeout: float = 5.0
    alert_retention: float = 24 * 60 * 60


@dataclass
class HealthSummary:
    """Counts of component states in the last report."""

    status: HealthStatus
    total_components: int = 0
    healthy_components: int = 0
    warning_components: int = 0
    critical_components: int = 0
    unknown_components: int = 0
    active_alerts: int = 0
    last_check: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "total_components": self.total_components,
            "healthy_components": self.healthy_components,
            "warning_components": self.warning_components,
            "critical_components": self.critical_components,
            "unknown_components": self.unknown_components,
            "active_alerts": self.active_alerts,
            "last_check": self.last_check.isoformat() if self.last_check else None,
        }


@dataclass
class HealthReport:
    """Result of one health check cycle."""

    status: HealthStatus
    timestamp: datetime
    uptime_seconds: float
    components: list[ComponentHealth]
    summary: HealthSummary
    system: dict[str, Any] = field(default_factory=dict)
    performance: dict[str, Any] = field(default_factory=dict)
    alerts: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert health report to dictionary.

        Returns:
            Dictionary with full health status.
        """
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 3),
            "components": {c.name: c.to_dict() for c in self.components},
            "metrics": {"system": self.system, "performance": self.performance},
            "alerts": self.alerts,
            "summary": self.summary.to_dict(),
        }


def aggregate_status(components: list[ComponentHealth], alert_count: int) -> HealthStatus:
    """Fold component states and alerts into one overall status.

    Any critical component makes the whole critical. Otherwise any warning
    component or any active alert makes it a warning. With no components at
    all the status is unknown.
    """
    statuses = {component.status for component in components}
    if HealthStatus.CRITICAL in statuses:
        return HealthStatus.CRITICAL
    if HealthStatus.WARNING in statuses or alert_count > 0:
        return HealthStatus.WARNING
    if not components:
        return HealthStatus.UNKNOWN
    return HealthStatus.HEALTHY


class HealthChecker:
    """Periodic health aggregator over registered probes.

    Args:
        monitor: Performance monitor whose alerts and metrics are included.
        config: Checker configuration.
        clock: Monotonic clock in seconds, used for uptime.
    """

    def __init__(
        self,
        monitor: PerformanceMonitor,
        config: HealthCheckConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.monitor = monitor
        self.config = config or HealthCheckConfig()
        self._clock = clock
        self._start_time = clock()
        self._probes: dict[str, HealthProbe] = {}
        self._last_results: dict[str, ComponentHealth] = {}
        self._last_report: HealthReport | None = None
        self._task: asyncio.Task[None] | None = None

    # =========================================================================
    # Registry
    # =========================================================================

    def register_component(self, name: str, probe: HealthProbe) -> None:
        """Register (or replace) the probe for a component.

        Args:
            name: Component name.
            probe: Async callable returning the component's health.
        """
        self._probes[name] = probe
        logger.debug(f"Registered health probe for {name}")

    def unregister_component(self, name: str) -> bool:
        """Remove a component's probe. Returns True if it was registered."""
        self._last_results.pop(name, None)
        return self._probes.pop(name, None) is not None

    def get_registered_components(self) -> list[str]:
        return list(self._probes)

    # =========================================================================
    # Checks
    # =========================================================================

    async def _run_probe(self, name: str, probe: HealthProbe) -> ComponentHealth:
        timeout = self.config.component_timeout
        try:
            result = await asyncio.wait_for(probe(), timeout=timeout)
            if not isinstance(result, ComponentHealth):
                raise TypeError(f"probe returned {type(result).__name__}, expected ComponentHealth")
        except asyncio.TimeoutError:
            logger.warning(f"Health probe {name} timed out after {timeout}s")
            return ComponentHealth(
                name=name,
                status=HealthStatus.CRITICAL,
                message=f"Health check failed: timed out after {timeout}s",
                details={"error": "timeout"},
            )
        except Exception as e:
            logger.warning(f"Health probe {name} failed: {type(e).__name__}: {e}")
            return ComponentHealth(
                name=name,
                status=HealthStatus.CRITICAL,
                message=f"Health check failed: {e}",
                details={"error": str(e)},
            )
        if result.name != name:
            result = dataclasses.replace(result, name=name)
        return result

    async def perform_health_check(self) -> HealthReport:
        """Run every probe and build a fresh report.

        Returns:
            The new HealthReport, also kept as the last report.
        """
        names = list(self._probes)
        components = list(await asyncio.gather(
            *(self._run_probe(name, self._probes[name]) for name in names)
        ))
        self._last_results = {component.name: component for component in components}

        alerts = self.monitor.get_active_alerts()
        status = aggregate_status(components, len(alerts))
        now = _utcnow()

        summary = HealthSummary(
            status=status,
            total_components=len(components),
            healthy_components=sum(c.status == HealthStatus.HEALTHY for c in components),
            warning_components=sum(c.status == HealthStatus.WARNING for c in components),
            critical_components=sum(c.status == HealthStatus.CRITICAL for c in components),
            unknown_components=sum(c.status == HealthStatus.UNKNOWN for c in components),
            active_alerts=len(alerts),
            last_check=now,
        )
        report = HealthReport(
            status=status,
            timestamp=now,
            uptime_seconds=self._clock() - self._start_time,
            components=components,
            summary=summary,
            system=self.monitor.get_system_metrics().to_dict(),
            performance=self.monitor.get_summary().to_dict(),
            alerts=[alert.to_dict() for alert in alerts],
        )
        self._last_report = report

        set_health_status("overall", status.metric_value)
        for component in components:
            set_health_status(component.name, component.status.metric_value)

        log_level = logging.INFO if status == HealthStatus.HEALTHY else logging.WARNING
        logger.log(
            log_level,
            f"Health check: {status.value} "
            f"({summary.critical_components} critical, {summary.warning_components} warning, "
            f"{len(alerts)} alerts)",
        )
        return report

    def get_component_health(self, name: str) -> ComponentHealth | None:
        """Return the component's result from the last check, if any."""
        return self._last_results.get(name)

    def get_health_report(self) -> HealthReport | None:
        return self._last_report

    def get_health_summary(self) -> HealthSummary:
        """Summary of the last report, or an unknown one before the first check."""
        if self._last_report is None:
            return HealthSummary(status=HealthStatus.UNKNOWN)
        return self._last_report.summary

    def clear_old_alerts(self) -> int:
        """Drop monitor alerts older than the configured retention."""
        return self.monitor.clear_old_alerts(self.config.alert_retention)

    # =========================================================================
    # Periodic checks
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start periodic checks, the first one immediately.

        Calling it while already running is a no-op.
        """
        if not self.config.enabled:
            logger.info("Health checks are disabled")
            return
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run_periodic())
        logger.info(f"Health checks started (every {self.config.check_interval}s)")

    def stop(self) -> None:
        """Stop periodic checks. Calling it when stopped is a no-op."""
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.info("Health checks stopped")

    async def _run_periodic(self) -> None:
        while True:
            try:
                await self.perform_health_check()
                self.clear_old_alerts()
            except Exception as e:
                logger.error(f"Health check cycle failed: {type(e).__name__}: {e}")
            await asyncio.sleep(self.config.check_interval)


# =============================================================================
# Standard probes
# =============================================================================

async def check_performance_health(monitor: PerformanceMonitor) -> ComponentHealth:
    """Report the performance monitor's verdict as a component.

    Args:
        monitor: The performance monitor.

    Returns:
        ComponentHealth for recent operation performance.
    """
    summary = monitor.get_summary()
    status = {
        "healthy": HealthStatus.HEALTHY,
        "warning": HealthStatus.WARNING,
        "critical": HealthStatus.CRITICAL,
    }[summary.system_health]
    return ComponentHealth(
        name="performance",
        status=status,
        message=f"{summary.total_operations} operations, {summary.active_alerts} active alerts",
        details=summary.to_dict(),
    )


async def check_system_health(monitor: PerformanceMonitor) -> ComponentHealth:
    """Check process memory against the configured threshold."""
    system = monitor.get_system_metrics()
    threshold = monitor.alert_config.memory_threshold
    if system.memory_percentage > threshold:
        return ComponentHealth(
            name="system",
            status=HealthStatus.WARNING,
            message=f"Process memory at {system.memory_percentage:.0%} of host memory",
            details=system.to_dict(),
        )
    return ComponentHealth(
        name="system",
        status=HealthStatus.HEALTHY,
        message="System resources within limits",
        details=system.to_dict(),
    )
