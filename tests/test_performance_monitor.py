"""
PerformanceMonitor tests.

Guards:
1. Success rate, average latency and per-type error rates over a window
2. Real-time window, derived queue depth and the alert metric map
3. Every document load runs an alert check
4. Cleanup and export by time range
"""
import asyncio
from datetime import timedelta

import pytest

from flipbook_monitoring.models.performance import PerformanceMetricType
from flipbook_monitoring.services.performance_monitor import PerformanceMonitor


def _run(coro):
    """Run an async coroutine in a sync test."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None
    if loop and loop.is_running():
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)


class StubAlerting:
    def __init__(self, fail=False):
        self.fail = fail
        self.checked = []

    async def check_and_trigger_alerts(self, metrics):
        if self.fail:
            raise RuntimeError("alerting offline")
        self.checked.append(metrics)
        return []


@pytest.fixture
def monitor(clock):
    return PerformanceMonitor(clock=clock)


def _load(monitor, clock, duration_ms, success=True, error_type=None, document_id="doc-1"):
    start = clock.now - timedelta(milliseconds=duration_ms)
    return _run(monitor.record_document_load(document_id, "user-1", start, clock.now, success, error_type=error_type))


class TestStats:

    def test_load_success_rate_and_error_rate(self, monitor, clock):
        """Three good loads and one NETWORK_FAILURE: 75% success, 2000 ms average, 25% error rate."""
        for duration in (1000, 2000, 3000):
            _load(monitor, clock, duration)
        _load(monitor, clock, 500, success=False, error_type="NETWORK_FAILURE")

        stats = monitor.get_performance_stats(clock.now - timedelta(hours=1), clock.now)

        assert stats.document_loading_success_rate == 75
        assert stats.average_load_time == 2000
        assert stats.error_rate_by_type["NETWORK_FAILURE"] == pytest.approx(25)
        assert stats.total_document_loads == 4

    def test_conversion_average_ignores_failures(self, monitor, clock):
        monitor.record_conversion("doc-1", clock.now - timedelta(seconds=10), clock.now, True)
        monitor.record_conversion("doc-2", clock.now - timedelta(seconds=90), clock.now, False, error_type="TIMEOUT")

        stats = monitor.get_performance_stats(clock.now - timedelta(hours=1), clock.now)

        assert stats.average_conversion_time == 10000
        assert stats.total_conversions == 2

    def test_empty_window_is_all_zero(self, monitor, clock):
        stats = monitor.get_performance_stats(clock.now - timedelta(hours=1), clock.now)

        assert stats.document_loading_success_rate == 0
        assert stats.error_rate_by_type == {}
        assert stats.to_dict()["timeRange"]["end"] == "2024-01-01T12:00:00.000Z"

    def test_load_record_ids_and_metadata(self, monitor, clock):
        metric = _load(monitor, clock, 1500)

        assert metric.id.startswith("load_doc-1_")
        assert metric.metadata["loadTimeMs"] == 1500
        assert metric.timestamp == clock.now


class TestRealTime:

    def test_window_excludes_old_records(self, monitor, clock):
        monitor.record_error("NETWORK_FAILURE", "old failure")
        clock.advance(minutes=10)
        _load(monitor, clock, 1000)

        realtime = monitor.get_real_time_metrics()

        assert realtime.current_error_rate == 0
        assert realtime.average_response_time == 1000

    def test_error_rate_per_operation(self, monitor, clock):
        _load(monitor, clock, 1000)
        _load(monitor, clock, 1000)
        monitor.record_error("NETWORK_FAILURE", "boom")

        assert monitor.get_real_time_metrics().current_error_rate == 50

    def test_queue_depth_uses_assumed_concurrency(self, clock):
        monitor = PerformanceMonitor(assumed_conversion_concurrency=2, clock=clock)
        for i in range(5):
            monitor.record_conversion(f"doc-{i}", clock.now, clock.now, False)

        realtime = monitor.get_real_time_metrics()

        assert realtime.active_conversions == 5
        assert realtime.queue_depth == 3

    def test_alert_metric_map(self, monitor, clock):
        _load(monitor, clock, 1200)
        metrics = monitor.get_real_time_metrics().to_alert_metrics()

        assert set(metrics) == {"conversion_failure_rate", "average_load_time", "queue_depth", "current_error_rate"}
        assert metrics["average_load_time"] == 1200


class TestAlertHook:

    def test_every_load_checks_alerts(self, clock):
        alerting = StubAlerting()
        monitor = PerformanceMonitor(alerting_system=alerting, clock=clock)

        _load(monitor, clock, 1000)
        _load(monitor, clock, 2000)

        assert len(alerting.checked) == 2
        assert alerting.checked[-1]["average_load_time"] == 1500

    def test_alert_failure_does_not_break_recording(self, clock):
        monitor = PerformanceMonitor(alerting_system=StubAlerting(fail=True), clock=clock)

        _load(monitor, clock, 1000)

        assert len(monitor) == 1


class TestRetention:

    def test_cleanup_removes_older_records(self, monitor, clock):
        monitor.record_error("A", "first")
        clock.advance(days=2)
        monitor.record_user_interaction("document_view_started", "user-1", "doc-1")

        removed = monitor.cleanup_old_metrics(clock.now - timedelta(days=1))

        assert removed == 1
        remaining = monitor.export_metrics(clock.now - timedelta(days=30), clock.now)
        assert [m.type for m in remaining] == [PerformanceMetricType.USER_INTERACTION]
        assert remaining[0].metadata["action"] == "document_view_started"
