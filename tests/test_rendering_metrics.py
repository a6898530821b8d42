"""
MetricsCollector tests.

Guards:
1. The 1000-record cap and the newest-500 trim
2. Derived threshold events (slow load, slow first page, high memory) and
   the one-level cascade limit
3. Session lifecycle (end twice returns None the second time)
4. JSON and CSV export shapes, top error ordering
5. Memory sampling through an injected probe
6. No operation raises: failures come back as empty or None results
"""
import json

import pytest

from flipbook_monitoring.models.rendering import InteractionType, RenderingEventType, ViewportSize
from flipbook_monitoring.services.rendering_metrics import (
    CSV_HEADERS,
    HIGH_MEMORY_BYTES,
    MEMORY_SAMPLER_JOB_ID,
    MetricsCollector,
)


class StubProbe:
    def __init__(self, used, limit):
        self.reading = (used, limit)

    def read(self):
        return self.reading


class StubScheduler:
    def __init__(self):
        self.jobs = {}

    def add_interval_job(self, func, job_id, name, seconds=0, minutes=0, hours=0):
        self.jobs[job_id] = func

    def remove_job(self, job_id):
        return self.jobs.pop(job_id, None) is not None


@pytest.fixture
def collector(clock):
    return MetricsCollector(clock=clock)


class TestStorage:

    def test_cap_and_trim(self, collector):
        """1001 events leave exactly the newest 500, in order."""
        for i in range(1001):
            collector.record_event(f"doc-{i}", RenderingEventType.RENDER_START, True)

        metrics = collector.get_metrics()
        assert len(metrics) == 500
        assert metrics[0].document_id == "doc-501"
        assert metrics[-1].document_id == "doc-1000"

    def test_timestamp_comes_from_clock(self, collector, clock):
        metric = collector.record_event("doc", RenderingEventType.RENDER_START, True)
        assert metric.timestamp == clock.now

    def test_json_export_round_trip(self, collector):
        """The exported metrics array has one entry per recorded event."""
        for _ in range(7):
            collector.record_event("doc", RenderingEventType.RENDER_SUCCESS, True, duration=100)

        exported = json.loads(collector.export_metrics("json"))

        assert len(exported["metrics"]) == 7
        assert set(exported) == {"metrics", "performanceSummary", "userAnalytics", "exportedAt"}

    def test_clear_old_metrics_keeps_newer_records(self, collector, clock):
        collector.record_event("old", RenderingEventType.RENDER_START, True)
        cutoff = clock.now
        clock.advance(minutes=1)
        collector.record_event("new", RenderingEventType.RENDER_START, True)

        removed = collector.clear_old_metrics(cutoff)

        assert removed == 1
        assert [m.document_id for m in collector.get_metrics()] == ["new"]


class TestThresholds:

    def test_slow_load_records_degradation(self, collector):
        collector.record_event("doc", RenderingEventType.LOAD_SUCCESS, True, duration=6000)

        events = [m.event_type for m in collector.get_metrics()]
        assert events == [RenderingEventType.LOAD_SUCCESS, RenderingEventType.PERFORMANCE_DEGRADATION]
        assert collector.get_metrics()[1].additional_data["issue"] == "slow_load"

    def test_fast_load_records_nothing_extra(self, collector):
        collector.record_event("doc", RenderingEventType.LOAD_SUCCESS, True, duration=5000)
        assert len(collector.get_metrics()) == 1

    def test_slow_first_page_only_for_page_one(self, collector):
        collector.record_event("doc", RenderingEventType.PAGE_RENDER_SUCCESS, True, duration=4000, page_number=2)
        assert len(collector.get_metrics()) == 1

        collector.record_event("doc", RenderingEventType.PAGE_RENDER_SUCCESS, True, duration=4000, page_number=1)
        assert collector.get_metrics()[-1].event_type == RenderingEventType.PERFORMANCE_DEGRADATION

    def test_high_memory_cascade_stops_after_one_level(self, collector):
        """A MEMORY_WARNING carrying high usage must not spawn another warning."""
        collector.record_event(
            "doc", RenderingEventType.RENDER_SUCCESS, True, memory_usage=HIGH_MEMORY_BYTES + 1
        )

        events = [m.event_type for m in collector.get_metrics()]
        assert events == [RenderingEventType.RENDER_SUCCESS, RenderingEventType.MEMORY_WARNING]


class TestSessions:

    def test_end_session_twice(self, collector):
        collector.start_user_session("s1", "doc", "user-1")

        first = collector.end_user_session("s1")
        second = collector.end_user_session("s1")

        assert first is not None
        assert first.total_view_time is not None
        assert second is None

    def test_view_time_from_clock(self, collector, clock):
        collector.start_user_session("s1", "doc")
        clock.advance(seconds=90)
        analytics = collector.end_user_session("s1")
        assert analytics.total_view_time == 90000

    def test_events_attach_to_matching_session(self, collector):
        collector.start_user_session("s1", "doc-a")
        collector.start_user_session("s2", "doc-b")

        collector.record_event("doc-b", RenderingEventType.RENDER_SUCCESS, True)

        assert collector.get_session("s1").rendering_metrics == []
        assert len(collector.get_session("s2").rendering_metrics) == 1

    def test_page_change_counts_each_page_once(self, collector):
        collector.start_user_session("s1", "doc")
        for page in (1, 2, 2, 3):
            collector.record_user_interaction("s1", InteractionType.PAGE_CHANGE, {"pageNumber": page})

        session = collector.get_session("s1")
        assert session.pages_viewed == [1, 2, 3]
        assert len(session.interaction_events) == 4

    def test_unknown_session_is_ignored(self, collector):
        collector.record_user_interaction("missing", InteractionType.ZOOM, {"scale": 2})

    def test_analytics_summary_over_finished_sessions(self, collector):
        collector.start_user_session("s1", "doc")
        collector.record_event("doc", RenderingEventType.RENDER_SUCCESS, True)
        collector.record_event("doc", RenderingEventType.RENDER_ERROR, False, error_type="x")
        collector.record_user_interaction("s1", "page_change", {"pageNumber": 1})
        collector.end_user_session("s1")

        summary = collector.get_user_analytics_summary()

        assert len(summary) == 1
        assert summary[0].document_id == "doc"
        assert summary[0].total_sessions == 1
        assert summary[0].total_page_views == 1
        assert summary[0].success_rate == 50


class TestSummaryAndExport:

    def test_performance_summary(self, collector):
        collector.record_event("doc", RenderingEventType.LOAD_SUCCESS, True, duration=1000)
        collector.record_event("doc", RenderingEventType.LOAD_SUCCESS, True, duration=3000)
        collector.record_event("doc", RenderingEventType.RENDER_ERROR, False, error_type="pdf_corrupted")
        collector.record_event("doc", RenderingEventType.RENDER_ERROR, False, error_type="pdf_corrupted")
        collector.record_event("doc", RenderingEventType.RENDER_ERROR, False, error_type="network_failure")

        summary = collector.get_performance_summary()

        assert summary.total_renders == 5
        assert summary.successful_renders == 2
        assert summary.success_rate == 40
        assert summary.average_load_time == 2000
        assert summary.common_errors[0].error_type == "pdf_corrupted"
        assert summary.common_errors[0].count == 2

    def test_csv_export(self, collector):
        collector.record_event(
            "doc", RenderingEventType.RENDER_SUCCESS, True,
            duration=120, user_agent="Mozilla/5.0, test", viewport_size=ViewportSize(1280, 720),
        )

        lines = collector.export_metrics("csv").split("\n")

        assert lines[0] == ",".join(CSV_HEADERS)
        assert len(lines) == 2
        assert lines[1].startswith("doc,render_success,")
        assert lines[1].endswith(",1280,720")

    def test_common_errors_ties_keep_first_seen_order(self, collector):
        for error_type in ("b", "a", "c", "a", "b", "c"):
            collector.record_event("doc", RenderingEventType.RENDER_ERROR, False, error_type=error_type)
        collector.record_event("doc", RenderingEventType.RENDER_ERROR, False, error_type="c")

        summary = collector.get_performance_summary()

        assert [(e.error_type, e.count) for e in summary.common_errors] == [("c", 3), ("b", 2), ("a", 2)]

    def test_common_errors_capped_at_ten(self, collector):
        for i in range(12):
            for _ in range(12 - i):
                collector.record_event("doc", RenderingEventType.RENDER_ERROR, False, error_type=f"type_{i}")

        errors = collector.get_performance_summary().common_errors

        assert len(errors) == 10
        assert errors[0].error_type == "type_0"
        assert errors[-1].error_type == "type_9"

    def test_unsupported_export_format_returns_empty(self, collector):
        collector.record_event("doc", RenderingEventType.RENDER_START, True)

        assert collector.export_metrics("xml") == ""


class TestFailureContainment:
    """Internal failures are logged and turned into safe defaults"""

    def test_summary_failure_returns_empty_summary(self, collector, monkeypatch):
        def broken():
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(collector, "get_metrics", broken)

        summary = collector.get_performance_summary()

        assert summary.total_renders == 0
        assert summary.common_errors == []
        assert collector.export_metrics("csv") == ""

    def test_analytics_failure_returns_empty_list(self, collector, monkeypatch):
        def broken():
            raise RuntimeError("history unavailable")

        monkeypatch.setattr(collector._finished_sessions, "snapshot", broken)

        assert collector.get_user_analytics_summary() == []

    def test_end_session_failure_returns_none(self, collector, monkeypatch):
        def broken(item):
            raise RuntimeError("history full")

        collector.start_user_session("s1", "doc")
        monkeypatch.setattr(collector._finished_sessions, "append", broken)

        assert collector.end_user_session("s1") is None


class TestMemorySampling:

    def test_high_usage_records_system_warning(self, clock):
        collector = MetricsCollector(memory_probe=StubProbe(90, 100), clock=clock)
        collector.sample_memory()

        metrics = collector.get_metrics()
        assert len(metrics) == 1
        assert metrics[0].document_id == "system"
        assert metrics[0].event_type == RenderingEventType.MEMORY_WARNING

    def test_normal_usage_records_nothing(self, clock):
        collector = MetricsCollector(memory_probe=StubProbe(50, 100), clock=clock)
        collector.sample_memory()
        assert collector.get_metrics() == []

    def test_no_probe_is_a_no_op(self, collector):
        collector.sample_memory()
        assert collector.get_metrics() == []

    def test_background_job_lifecycle(self, clock):
        scheduler = StubScheduler()
        collector = MetricsCollector(memory_probe=StubProbe(1, 100), clock=clock)

        collector.start_background(scheduler)
        collector.start_background(scheduler)
        assert list(scheduler.jobs) == [MEMORY_SAMPLER_JOB_ID]

        collector.record_event("doc", RenderingEventType.RENDER_START, True)
        collector.destroy()
        collector.destroy()

        assert scheduler.jobs == {}
        assert collector.get_metrics() == []
