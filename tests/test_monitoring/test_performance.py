"""Tests for the performance monitor."""

import pytest

from tuningsearch_mcp.monitoring.performance import (
    AlertConfig,
    AlertSeverity,
    AlertType,
    PerformanceMonitor,
    percentile,
)


@pytest.fixture
def quiet_monitor(clock):
    """Create a monitor with alerts disabled."""
    return PerformanceMonitor(AlertConfig(enabled=False), clock=clock, timer=clock)


# =============================================================================
# Test Percentiles
# =============================================================================

class TestPercentile:
    """Tests for nearest-rank percentiles."""

    def test_empty(self):
        """Test that an empty list yields zero."""
        assert percentile([], 0.95) == 0.0

    def test_nearest_rank(self):
        """Test nearest-rank selection on 1..100."""
        values = [float(i) for i in range(1, 101)]
        assert percentile(values, 0.95) == 95.0
        assert percentile(values, 0.99) == 99.0
        assert percentile(values, 0.5) == 50.0

    def test_single_value(self):
        """Test that one sample is every percentile."""
        assert percentile([42.0], 0.99) == 42.0


# =============================================================================
# Test Recording
# =============================================================================

class TestRecording:
    """Tests for recording operations."""

    def test_record_operation(self, quiet_monitor):
        """Test aggregate metrics after a few samples."""
        for duration, success in [(100, True), (300, True), (200, False)]:
            quiet_monitor.record_operation("search", duration, success)

        metrics = quiet_monitor.get_operation_metrics("search")
        assert metrics.count == 3
        assert metrics.total_time_ms == 600
        assert metrics.average_time_ms == 200
        assert metrics.min_time_ms == 100
        assert metrics.max_time_ms == 300
        assert metrics.success_count == 2
        assert metrics.failure_count == 1
        assert metrics.success_rate == pytest.approx(2 / 3)

    def test_p99_not_below_p95(self, quiet_monitor):
        """Test that p99 is never below p95."""
        for duration in [5, 900, 12, 40, 40, 3000, 7, 1, 250, 60]:
            quiet_monitor.record_operation("search", duration)
            metrics = quiet_monitor.get_operation_metrics("search")
            assert metrics.p99_ms >= metrics.p95_ms

    def test_sample_ring_is_bounded(self, clock):
        """Test that percentiles only use the most recent samples."""
        monitor = PerformanceMonitor(AlertConfig(enabled=False), max_samples=3, clock=clock, timer=clock)
        for duration in [1000, 1, 2, 3]:
            monitor.record_operation("search", duration)

        metrics = monitor.get_operation_metrics("search")
        assert metrics.p99_ms == 3
        assert metrics.max_time_ms == 1000

    def test_operations_per_second_window(self, quiet_monitor, clock):
        """Test that throughput counts only the last minute."""
        for _ in range(30):
            quiet_monitor.record_operation("search", 10)
        clock.advance(61)
        quiet_monitor.record_operation("search", 10)

        assert quiet_monitor.get_operation_metrics("search").operations_per_second == pytest.approx(1 / 60)

    def test_start_operation_records_once(self, quiet_monitor, clock):
        """Test the stop function returned by start_operation."""
        stop = quiet_monitor.start_operation("crawl")
        clock.advance(0.25)

        assert stop(success=False) == pytest.approx(250)
        assert stop() == pytest.approx(250)

        metrics = quiet_monitor.get_operation_metrics("crawl")
        assert metrics.count == 1
        assert metrics.failure_count == 1

    @pytest.mark.asyncio
    async def test_track_context_manager(self, quiet_monitor):
        """Test that an exception in the tracked block records a failure."""
        async with quiet_monitor.track("search"):
            pass
        with pytest.raises(RuntimeError):
            async with quiet_monitor.track("search"):
                raise RuntimeError("boom")

        metrics = quiet_monitor.get_operation_metrics("search")
        assert metrics.success_count == 1
        assert metrics.failure_count == 1

    def test_metrics_are_copies(self, quiet_monitor):
        """Test that returned metrics cannot change the monitor."""
        quiet_monitor.record_operation("search", 10)
        quiet_monitor.get_operation_metrics("search").count = 99
        assert quiet_monitor.get_operation_metrics("search").count == 1
        assert quiet_monitor.get_operation_metrics("unknown") is None

    def test_reset(self, quiet_monitor):
        """Test that reset forgets everything."""
        quiet_monitor.record_operation("search", 10)
        quiet_monitor.reset()
        assert quiet_monitor.get_all_metrics() == []


# =============================================================================
# Test Alerts
# =============================================================================

class TestAlerts:
    """Tests for alert generation."""

    def test_response_time_alert(self, monitor):
        """Test warning and critical response time alerts."""
        monitor.record_operation("search", 6000)
        monitor.record_operation("crawl", 11000)

        alerts = {alert.operation: alert for alert in monitor.get_alerts()}
        assert alerts["search"].type == AlertType.RESPONSE_TIME
        assert alerts["search"].severity == AlertSeverity.WARNING
        assert alerts["crawl"].severity == AlertSeverity.CRITICAL

    def test_error_rate_alert(self, monitor):
        """Test that a success rate below one half is critical."""
        monitor.record_operation("search", 10, success=False)

        alert = monitor.get_alerts()[0]
        assert alert.type == AlertType.ERROR_RATE
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.value == 1.0

    def test_alerts_are_deduplicated(self, monitor, clock):
        """Test that the same alert is raised once per five minutes."""
        monitor.record_operation("search", 10, success=False)
        monitor.record_operation("search", 10, success=False)
        assert len(monitor.get_alerts()) == 1

        clock.advance(301)
        monitor.record_operation("search", 10, success=False)
        assert len(monitor.get_alerts()) == 2

    def test_high_load_alert(self, clock):
        """Test the operations per second alert."""
        monitor = PerformanceMonitor(AlertConfig(ops_threshold=0.5), clock=clock, timer=clock)
        for _ in range(31):
            monitor.record_operation("search", 1)

        assert any(alert.type == AlertType.HIGH_LOAD for alert in monitor.get_alerts())

    def test_disabled_alerts(self, quiet_monitor):
        """Test that disabled alerts are never raised."""
        quiet_monitor.record_operation("search", 100000, success=False)
        assert quiet_monitor.get_alerts() == []

    def test_active_alerts_window(self, monitor, clock):
        """Test that only alerts from the last hour are active."""
        monitor.record_operation("search", 10, success=False)
        clock.advance(3601)
        assert monitor.get_active_alerts() == []
        assert len(monitor.get_alerts()) == 1

    def test_clear_old_alerts(self, monitor, clock):
        """Test pruning alerts by age."""
        monitor.record_operation("search", 10, success=False)
        clock.advance(100)
        monitor.record_operation("crawl", 10, success=False)

        assert monitor.clear_old_alerts(older_than=50) == 1
        assert [alert.operation for alert in monitor.get_alerts()] == ["crawl"]

    def test_update_alert_config(self, monitor):
        """Test changing thresholds at runtime."""
        monitor.update_alert_config(response_time_threshold_ms=50)
        monitor.record_operation("search", 60)
        assert monitor.get_alerts()[0].type == AlertType.RESPONSE_TIME


# =============================================================================
# Test Summary
# =============================================================================

class TestSummary:
    """Tests for the summary and export."""

    def test_empty_summary(self, monitor):
        """Test the summary before any operation."""
        summary = monitor.get_summary()
        assert summary.total_operations == 0
        assert summary.average_response_time_ms == 0.0
        assert summary.overall_success_rate == 1.0
        assert summary.system_health == "healthy"

    def test_summary_with_critical_alert(self, monitor):
        """Test that a critical alert makes the summary critical."""
        monitor.record_operation("search", 100)
        monitor.record_operation("search", 300, success=False)
        monitor.record_operation("crawl", 10, success=False)

        summary = monitor.get_summary()
        assert summary.total_operations == 3
        assert summary.average_response_time_ms == pytest.approx(410 / 3)
        assert summary.overall_success_rate == pytest.approx(1 / 3)
        assert summary.system_health == "critical"

    def test_export(self, monitor):
        """Test that export contains every section."""
        monitor.record_operation("search", 10)
        exported = monitor.export_metrics()
        assert set(exported) == {"operations", "system", "alerts", "summary"}
        assert exported["operations"][0]["name"] == "search"
