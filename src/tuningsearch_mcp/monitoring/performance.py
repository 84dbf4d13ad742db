"""Per-operation performance tracking with percentile statistics and alerts."""

import dataclasses
import logging
import math
import os
import time
from collections import deque
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import psutil

logger = logging.getLogger(__name__)

ALERT_DEDUP_WINDOW_SECONDS = 5 * 60
MAX_ALERTS = 100
OPS_WINDOW_SECONDS = 60.0
SUMMARY_ALERT_WINDOW_SECONDS = 60 * 60


class AlertType(str, Enum):
    """Conditions that raise a performance alert."""

    RESPONSE_TIME = "response_time"
    ERROR_RATE = "error_rate"
    HIGH_LOAD = "high_load"


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class AlertConfig:
    """Alert thresholds.

    Attributes:
        enabled: Whether alerts are evaluated at all.
        response_time_threshold_ms: Average duration that raises an alert.
        error_rate_threshold: Failure ratio (0-1) that raises an alert.
        memory_threshold: Process memory ratio (0-1) reported as a warning
            by the system health probe.
        ops_threshold: Operations per second that raise a high-load alert.
    """

    enabled: bool = True
    response_time_threshold_ms: float = 5000.0
    error_rate_threshold: float = 0.1
    memory_threshold: float = 0.8
    ops_threshold: float = 100.0


@dataclass(frozen=True)
class PerformanceAlert:
    """A threshold breach for one operation."""

    type: AlertType
    severity: AlertSeverity
    message: str
    value: float
    threshold: float
    timestamp: float
    operation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "value": round(self.value, 4),
            "threshold": self.threshold,
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
            "operation": self.operation,
        }


@dataclass
class OperationMetrics:
    """Aggregated statistics of one named operation.

    ``count`` and the totals are cumulative. Percentiles only cover the most
    recent samples and ``operations_per_second`` the last minute.
    """

    name: str
    count: int = 0
    total_time_ms: float = 0.0
    average_time_ms: float = 0.0
    min_time_ms: float = 0.0
    max_time_ms: float = 0.0
    success_count: int = 0
    failure_count: int = 0
    success_rate: float = 0.0
    operations_per_second: float = 0.0
    p95_ms: float = 0.0
    p99_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class SystemMetrics:
    """Process and host resource usage."""

    memory_used_bytes: int
    memory_total_bytes: int
    memory_percentage: float
    cpu_percentage: float
    uptime_seconds: float
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class PerformanceSummary:
    """All operations folded into one verdict."""

    total_operations: int
    average_response_time_ms: float
    overall_success_rate: float
    active_alerts: int
    system_health: str

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


def percentile(sorted_values: list[float], p: float) -> float:
    """Nearest-rank percentile of an ascending list.

    Args:
        sorted_values: Samples in ascending order.
        p: Percentile as a fraction, e.g. 0.95.

    Returns:
        The sample at index ``ceil(n * p) - 1``, or 0 for no samples.
    """
    if not sorted_values:
        return 0.0
    index = math.ceil(len(sorted_values) * p) - 1
    return sorted_values[max(0, min(index, len(sorted_values) - 1))]


@dataclass
class _OperationState:
    metrics: OperationMetrics
    samples: deque[tuple[float, float]]
    recent: deque[float] = field(default_factory=deque)


class PerformanceMonitor:
    """Records durations and outcomes of named operations.

    Args:
        alert_config: Alert thresholds.
        max_samples: Size of the per-operation sample ring used for percentiles.
        clock: Wall clock in seconds, used for timestamps and windows.
        timer: Monotonic timer in seconds, used to measure durations.
    """

    def __init__(
        self,
        alert_config: AlertConfig | None = None,
        max_samples: int = 1000,
        clock: Callable[[], float] = time.time,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.alert_config = alert_config or AlertConfig()
        self.max_samples = max_samples
        self._clock = clock
        self._timer = timer
        self._operations: dict[str, _OperationState] = {}
        self._alerts: deque[PerformanceAlert] = deque(maxlen=MAX_ALERTS)
        self._start_time = clock()
        self._process = psutil.Process(os.getpid())

    # =========================================================================
    # Recording
    # =========================================================================

    def start_operation(self, name: str) -> Callable[..., float]:
        """Start timing an operation.

        Args:
            name: Operation name.

        Returns:
            A ``stop(success=True)`` function that records the elapsed time
            once and returns it in milliseconds.
        """
        started = self._timer()
        recorded: list[float] = []

        def stop(success: bool = True) -> float:
            if recorded:
                return recorded[0]
            duration_ms = (self._timer() - started) * 1000
            recorded.append(duration_ms)
            self.record_operation(name, duration_ms, success)
            return duration_ms

        return stop

    @asynccontextmanager
    async def track(self, name: str):
        """Time the enclosed block; an exception records a failure.

        Args:
            name: Operation name.

        Yields:
            None.
        """
        stop = self.start_operation(name)
        try:
            yield
        except BaseException:
            stop(False)
            raise
        stop(True)

    def record_operation(self, name: str, duration_ms: float, success: bool = True) -> None:
        """Record one completed operation.

        Args:
            name: Operation name.
            duration_ms: Duration in milliseconds.
            success: Whether the operation succeeded.
        """
        now = self._clock()
        state = self._operations.get(name)
        if state is None:
            state = _OperationState(
                metrics=OperationMetrics(name=name, min_time_ms=math.inf),
                samples=deque(maxlen=self.max_samples),
            )
            self._operations[name] = state

        metrics = state.metrics
        metrics.count += 1
        metrics.total_time_ms += duration_ms
        metrics.average_time_ms = metrics.total_time_ms / metrics.count
        metrics.min_time_ms = min(metrics.min_time_ms, duration_ms)
        metrics.max_time_ms = max(metrics.max_time_ms, duration_ms)
        if success:
            metrics.success_count += 1
        else:
            metrics.failure_count += 1
        metrics.success_rate = metrics.success_count / metrics.count

        state.samples.append((duration_ms, now))
        ordered = sorted(duration for duration, _ in state.samples)
        metrics.p95_ms = percentile(ordered, 0.95)
        metrics.p99_ms = percentile(ordered, 0.99)

        state.recent.append(now)
        window_start = now - OPS_WINDOW_SECONDS
        while state.recent and state.recent[0] <= window_start:
            state.recent.popleft()
        metrics.operations_per_second = len(state.recent) / OPS_WINDOW_SECONDS

        if self.alert_config.enabled:
            self._check_alerts(metrics, now)

    # =========================================================================
    # Alerts
    # =========================================================================

    def _check_alerts(self, metrics: OperationMetrics, now: float) -> None:
        config = self.alert_config

        if metrics.average_time_ms > config.response_time_threshold_ms:
            self._add_alert(PerformanceAlert(
                type=AlertType.RESPONSE_TIME,
                severity=(
                    AlertSeverity.CRITICAL
                    if metrics.average_time_ms > config.response_time_threshold_ms * 2
                    else AlertSeverity.WARNING
                ),
                message=f"High average response time for {metrics.name}",
                value=metrics.average_time_ms,
                threshold=config.response_time_threshold_ms,
                timestamp=now,
                operation=metrics.name,
            ))

        error_rate = 1 - metrics.success_rate
        if error_rate > config.error_rate_threshold:
            self._add_alert(PerformanceAlert(
                type=AlertType.ERROR_RATE,
                severity=AlertSeverity.CRITICAL if metrics.success_rate < 0.5 else AlertSeverity.WARNING,
                message=f"High error rate for {metrics.name}",
                value=error_rate,
                threshold=config.error_rate_threshold,
                timestamp=now,
                operation=metrics.name,
            ))

        if metrics.operations_per_second > config.ops_threshold:
            self._add_alert(PerformanceAlert(
                type=AlertType.HIGH_LOAD,
                severity=(
                    AlertSeverity.CRITICAL
                    if metrics.operations_per_second > config.ops_threshold * 2
                    else AlertSeverity.WARNING
                ),
                message=f"High load for {metrics.name}",
                value=metrics.operations_per_second,
                threshold=config.ops_threshold,
                timestamp=now,
                operation=metrics.name,
            ))

    def _add_alert(self, alert: PerformanceAlert) -> None:
        window_start = alert.timestamp - ALERT_DEDUP_WINDOW_SECONDS
        for existing in self._alerts:
            if (
                existing.type == alert.type
                and existing.operation == alert.operation
                and existing.timestamp > window_start
            ):
                return
        self._alerts.append(alert)
        logger.warning(
            f"Performance alert [{alert.severity.value}] {alert.message}: "
            f"{alert.value:.3f} (threshold {alert.threshold})"
        )

    def get_alerts(self, since: float | None = None) -> list[PerformanceAlert]:
        """Return alerts, optionally only those raised after ``since``."""
        if since is None:
            return list(self._alerts)
        return [alert for alert in self._alerts if alert.timestamp > since]

    def get_active_alerts(self) -> list[PerformanceAlert]:
        """Return alerts raised within the last hour."""
        return self.get_alerts(since=self._clock() - SUMMARY_ALERT_WINDOW_SECONDS)

    def clear_old_alerts(self, older_than: float = 24 * 60 * 60) -> int:
        """Drop alerts older than ``older_than`` seconds.

        Returns:
            Number of alerts removed.
        """
        cutoff = self._clock() - older_than
        kept = [alert for alert in self._alerts if alert.timestamp > cutoff]
        removed = len(self._alerts) - len(kept)
        self._alerts = deque(kept, maxlen=MAX_ALERTS)
        return removed

    def update_alert_config(self, **changes: Any) -> None:
        """Change alert thresholds in place."""
        self.alert_config = dataclasses.replace(self.alert_config, **changes)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_operation_metrics(self, name: str) -> OperationMetrics | None:
        """Return a copy of one operation's metrics, or None if never recorded."""
        state = self._operations.get(name)
        if state is None:
            return None
        return dataclasses.replace(state.metrics)

    def get_all_metrics(self) -> list[OperationMetrics]:
        return [dataclasses.replace(state.metrics) for state in self._operations.values()]

    def get_system_metrics(self) -> SystemMetrics:
        """Sample process memory and CPU usage."""
        memory = self._process.memory_info()
        total = psutil.virtual_memory().total
        now = self._clock()
        return SystemMetrics(
            memory_used_bytes=memory.rss,
            memory_total_bytes=total,
            memory_percentage=memory.rss / total if total else 0.0,
            cpu_percentage=self._process.cpu_percent(interval=None),
            uptime_seconds=now - self._start_time,
            timestamp=now,
        )

    def get_summary(self) -> PerformanceSummary:
        """Fold all operations and last-hour alerts into one verdict."""
        all_metrics = [state.metrics for state in self._operations.values()]
        total_operations = sum(m.count for m in all_metrics)
        total_time = sum(m.total_time_ms for m in all_metrics)
        total_successes = sum(m.success_count for m in all_metrics)

        recent = self.get_active_alerts()
        if any(alert.severity == AlertSeverity.CRITICAL for alert in recent):
            system_health = "critical"
        elif recent:
            system_health = "warning"
        else:
            system_health = "healthy"

        return PerformanceSummary(
            total_operations=total_operations,
            average_response_time_ms=total_time / total_operations if total_operations else 0.0,
            overall_success_rate=total_successes / total_operations if total_operations else 1.0,
            active_alerts=len(recent),
            system_health=system_health,
        )

    def export_metrics(self) -> dict[str, Any]:
        """Return everything the monitor knows as plain data."""
        return {
            "operations": [m.to_dict() for m in self.get_all_metrics()],
            "system": self.get_system_metrics().to_dict(),
            "alerts": [a.to_dict() for a in self.get_alerts()],
            "summary": self.get_summary().to_dict(),
        }

    def reset(self) -> None:
        """Forget all operations and alerts."""
        self._operations.clear()
        self._alerts.clear()
        self._start_time = self._clock()
