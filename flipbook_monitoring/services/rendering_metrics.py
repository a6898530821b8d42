"""
Rendering Metrics Collector
Ingests rendering lifecycle events, keeps rolling in-memory metrics and
per-session viewing analytics, and computes performance summaries.
"""
import csv
import io
import json
import os
import threading
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

import psutil

from flipbook_monitoring.models.rendering import (
    DocumentAnalyticsSummary,
    ErrorCount,
    InteractionEvent,
    InteractionType,
    PerformanceSummary,
    RenderingEventType,
    RenderingMetrics,
    UserAnalytics,
    ViewportSize,
)
from flipbook_monitoring.utils.bounded_log import BoundedLog
from flipbook_monitoring.utils.helpers import average, iso, safe_divide, utc_now
from flipbook_monitoring.utils.logger import log

MAX_METRICS = 1000
RETAINED_METRICS = 500
MAX_SESSION_HISTORY = 1000
RETAINED_SESSION_HISTORY = 500

SLOW_LOAD_MS = 5000
SLOW_FIRST_PAGE_MS = 3000
HIGH_MEMORY_BYTES = 500 * 1024 * 1024

MEMORY_SAMPLER_JOB_ID = "rendering_memory_sampler"

CSV_HEADERS = [
    "documentId",
    "eventType",
    "timestamp",
    "duration",
    "memoryUsage",
    "pageNumber",
    "totalPages",
    "errorType",
    "success",
    "userAgent",
    "viewportWidth",
    "viewportHeight",
]


class MemoryProbe(Protocol):
    def read(self) -> Optional[Tuple[int, int]]:
        """Return (used_bytes, limit_bytes), or None when unavailable"""


class PsutilMemoryProbe:
    """Resident memory of this process against total system memory"""

    def __init__(self, pid: Optional[int] = None):
        self._process = psutil.Process(pid or os.getpid())

    def read(self) -> Optional[Tuple[int, int]]:
        used = self._process.memory_info().rss
        limit = psutil.virtual_memory().total
        return used, limit


def _csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class MetricsCollector:
    """
    Rolling store of RenderingMetrics plus active viewing sessions.

    The metrics log holds at most 1000 records; on overflow it keeps the
    newest 500. Finalized sessions move to a bounded history that feeds the
    analytics summary and the export.
    """

    def __init__(
        self,
        memory_probe: Optional[MemoryProbe] = None,
        memory_warning_percent: float = 80.0,
        memory_sample_interval_seconds: int = 30,
        clock=utc_now,
    ):
        self.memory_probe = memory_probe
        self.memory_warning_percent = memory_warning_percent
        self.memory_sample_interval_seconds = memory_sample_interval_seconds
        self._clock = clock

        self._metrics: BoundedLog[RenderingMetrics] = BoundedLog(MAX_METRICS, RETAINED_METRICS)
        self._sessions: Dict[str, UserAnalytics] = {}
        self._finished_sessions: BoundedLog[UserAnalytics] = BoundedLog(
            MAX_SESSION_HISTORY, RETAINED_SESSION_HISTORY
        )
        self._lock = threading.RLock()
        self._scheduler = None

    # Event ingestion

    def record_event(
        self,
        document_id: str,
        event_type: RenderingEventType,
        success: bool,
        duration: Optional[float] = None,
        memory_usage: Optional[int] = None,
        page_number: Optional[int] = None,
        total_pages: Optional[int] = None,
        error_type: Optional[str] = None,
        user_agent: Optional[str] = None,
        viewport_size: Optional[ViewportSize] = None,
        pdf_url: Optional[str] = None,
        file_size: Optional[int] = None,
        additional_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[RenderingMetrics]:
        """Store a timestamped event, attach it to a session and run the threshold checks"""
        try:
            metric = RenderingMetrics(
                document_id=document_id,
                event_type=RenderingEventType(event_type),
                timestamp=self._clock(),
                success=success,
                duration=duration,
                memory_usage=memory_usage,
                page_number=page_number,
                total_pages=total_pages,
                error_type=error_type,
                user_agent=user_agent,
                viewport_size=viewport_size,
                pdf_url=pdf_url,
                file_size=file_size,
                additional_data=additional_data,
            )

            with self._lock:
                self._metrics.append(metric)
                self._attach_to_session(metric)

            self._log_event(metric)
            self._check_performance_thresholds(metric)
            return metric
        except Exception as e:
            log.bind(documentId=document_id).error(f"Failed to record rendering event: {str(e)}")
            return None

    def _attach_to_session(self, metric: RenderingMetrics) -> None:
        # First active session viewing this document
        for analytics in self._sessions.values():
            if analytics.document_id == metric.document_id:
                analytics.rendering_metrics.append(metric)
                break

    def _log_event(self, metric: RenderingMetrics) -> None:
        bound = log.bind(
            documentId=metric.document_id,
            eventType=metric.event_type.value,
            duration=metric.duration,
            memoryUsage=metric.memory_usage,
            pageNumber=metric.page_number,
            totalPages=metric.total_pages,
            errorType=metric.error_type,
            userAgent=metric.user_agent,
            viewportSize=metric.viewport_size.to_dict() if metric.viewport_size else None,
            additionalData=metric.additional_data,
        )
        message = f"Rendering {metric.event_type.value}: {'success' if metric.success else 'failed'}"
        if metric.success:
            bound.info(message)
        else:
            bound.error(message)

    def _check_performance_thresholds(self, metric: RenderingMetrics) -> None:
        """
        Emit at most one derived event per check.

        Derived PERFORMANCE_DEGRADATION events never match the load or first
        page checks, and MEMORY_WARNING events skip the memory check, so the
        cascade stops after one level.
        """
        if (
            metric.event_type == RenderingEventType.LOAD_SUCCESS
            and metric.duration
            and metric.duration > SLOW_LOAD_MS
        ):
            log.bind(documentId=metric.document_id, duration=metric.duration, threshold=SLOW_LOAD_MS).warning(
                "Slow document load detected"
            )
            self.record_event(
                document_id=metric.document_id,
                event_type=RenderingEventType.PERFORMANCE_DEGRADATION,
                success=False,
                duration=metric.duration,
                additional_data={"issue": "slow_load", "threshold": SLOW_LOAD_MS},
            )

        if (
            metric.event_type == RenderingEventType.PAGE_RENDER_SUCCESS
            and metric.page_number == 1
            and metric.duration
            and metric.duration > SLOW_FIRST_PAGE_MS
        ):
            log.bind(documentId=metric.document_id, duration=metric.duration, threshold=SLOW_FIRST_PAGE_MS).warning(
                "Slow first page render detected"
            )
            self.record_event(
                document_id=metric.document_id,
                event_type=RenderingEventType.PERFORMANCE_DEGRADATION,
                success=False,
                duration=metric.duration,
                additional_data={"issue": "slow_first_page_render", "threshold": SLOW_FIRST_PAGE_MS},
            )

        if (
            metric.event_type != RenderingEventType.MEMORY_WARNING
            and metric.memory_usage
            and metric.memory_usage > HIGH_MEMORY_BYTES
        ):
            log.bind(
                documentId=metric.document_id,
                memoryUsage=metric.memory_usage,
                threshold=HIGH_MEMORY_BYTES,
            ).warning("High memory usage detected")
            self.record_event(
                document_id=metric.document_id,
                event_type=RenderingEventType.MEMORY_WARNING,
                success=False,
                memory_usage=metric.memory_usage,
                additional_data={"issue": "high_memory_usage", "threshold": HIGH_MEMORY_BYTES},
            )

    # Sessions

    def start_user_session(self, session_id: str, document_id: str, user_id: Optional[str] = None) -> UserAnalytics:
        analytics = UserAnalytics(
            session_id=session_id,
            document_id=document_id,
            user_id=user_id,
            view_start_time=self._clock(),
        )
        with self._lock:
            self._sessions[session_id] = analytics

        log.bind(
            sessionId=session_id,
            documentId=document_id,
            userId=user_id,
            timestamp=iso(analytics.view_start_time),
        ).info("User session started")
        return analytics

    def end_user_session(self, session_id: str) -> Optional[UserAnalytics]:
        """Finalize and evict a session. Returns None for unknown or already ended sessions."""
        try:
            return self._finalize_session(session_id)
        except Exception as e:
            log.bind(sessionId=session_id).error(f"Failed to end user session: {str(e)}")
            return None

    def _finalize_session(self, session_id: str) -> Optional[UserAnalytics]:
        with self._lock:
            analytics = self._sessions.pop(session_id, None)
            if analytics is None:
                return None

            analytics.view_end_time = self._clock()
            analytics.total_view_time = (
                analytics.view_end_time - analytics.view_start_time
            ).total_seconds() * 1000
            self._finished_sessions.append(analytics)

        log.bind(
            sessionId=session_id,
            documentId=analytics.document_id,
            userId=analytics.user_id,
            totalViewTime=analytics.total_view_time,
            pagesViewed=len(analytics.pages_viewed),
            interactionEvents=len(analytics.interaction_events),
            renderingEvents=len(analytics.rendering_metrics),
        ).info("User session ended")
        return analytics

    def record_user_interaction(self, session_id: str, type: InteractionType, data: Optional[Dict[str, Any]] = None) -> None:
        """Append an interaction; silently ignored for unknown sessions"""
        try:
            interaction_type = InteractionType(type)
        except ValueError:
            log.bind(sessionId=session_id).warning(f"Unknown interaction type: {type}")
            return

        with self._lock:
            analytics = self._sessions.get(session_id)
            if analytics is None:
                return

            analytics.interaction_events.append(
                InteractionEvent(type=interaction_type, timestamp=self._clock(), data=data)
            )

            if interaction_type == InteractionType.PAGE_CHANGE and data and data.get("pageNumber"):
                page = data["pageNumber"]
                if page not in analytics.pages_viewed:
                    analytics.pages_viewed.append(page)

    def get_session(self, session_id: str) -> Optional[UserAnalytics]:
        with self._lock:
            return self._sessions.get(session_id)

    # Aggregation

    def get_metrics(self) -> List[RenderingMetrics]:
        with self._lock:
            return self._metrics.snapshot()

    def get_performance_summary(self, time_range: Optional[Tuple[datetime, datetime]] = None) -> PerformanceSummary:
        """Summary over all metrics or a window; an empty summary if aggregation fails"""
        try:
            return self._summarize(time_range)
        except Exception as e:
            log.error(f"Failed to build performance summary: {str(e)}")
            start, end = time_range if time_range else (self._clock(), self._clock())
            return PerformanceSummary(
                total_renders=0,
                successful_renders=0,
                failed_renders=0,
                success_rate=0.0,
                average_load_time=0.0,
                average_render_time=0.0,
                average_memory_usage=0.0,
                common_errors=[],
                start=start,
                end=end,
            )

    def _summarize(self, time_range: Optional[Tuple[datetime, datetime]]) -> PerformanceSummary:
        metrics = self.get_metrics()
        if time_range:
            start, end = time_range
            metrics = [m for m in metrics if start <= m.timestamp <= end]

        total = len(metrics)
        successful = len([m for m in metrics if m.success])

        load_times = [
            m.duration for m in metrics
            if m.event_type == RenderingEventType.LOAD_SUCCESS and m.duration
        ]
        render_times = [
            m.duration for m in metrics
            if m.event_type == RenderingEventType.RENDER_SUCCESS and m.duration
        ]
        memory_usages = [m.memory_usage for m in metrics if m.memory_usage]

        # Counter keeps first-seen order, and sorted() is stable, so ties stay in that order
        error_counts = Counter(m.error_type for m in metrics if not m.success and m.error_type)
        common_errors = [
            ErrorCount(error_type=error_type, count=count)
            for error_type, count in sorted(error_counts.items(), key=lambda item: -item[1])[:10]
        ]

        if time_range:
            start, end = time_range
        else:
            now = self._clock()
            start = metrics[0].timestamp if metrics else now
            end = metrics[-1].timestamp if metrics else now

        return PerformanceSummary(
            total_renders=total,
            successful_renders=successful,
            failed_renders=total - successful,
            success_rate=safe_divide(successful, total) * 100,
            average_load_time=average(load_times),
            average_render_time=average(render_times),
            average_memory_usage=average(memory_usages),
            common_errors=common_errors,
            start=start,
            end=end,
        )

    def get_user_analytics_summary(self) -> List[DocumentAnalyticsSummary]:
        try:
            return self._summarize_sessions()
        except Exception as e:
            log.error(f"Failed to build user analytics summary: {str(e)}")
            return []

    def _summarize_sessions(self) -> List[DocumentAnalyticsSummary]:
        with self._lock:
            sessions = self._finished_sessions.snapshot()

        stats: Dict[str, Dict[str, float]] = {}
        for analytics in sessions:
            entry = stats.setdefault(analytics.document_id, {
                "sessions": 0,
                "total_view_time": 0.0,
                "total_page_views": 0,
                "successful_renders": 0,
                "total_renders": 0,
            })
            entry["sessions"] += 1
            entry["total_view_time"] += analytics.total_view_time or 0
            entry["total_page_views"] += len(analytics.pages_viewed)
            entry["total_renders"] += len(analytics.rendering_metrics)
            entry["successful_renders"] += len([m for m in analytics.rendering_metrics if m.success])

        return [
            DocumentAnalyticsSummary(
                document_id=document_id,
                total_sessions=int(entry["sessions"]),
                average_view_time=safe_divide(entry["total_view_time"], entry["sessions"]),
                total_page_views=int(entry["total_page_views"]),
                success_rate=safe_divide(entry["successful_renders"], entry["total_renders"]) * 100,
            )
            for document_id, entry in stats.items()
        ]

    def export_metrics(self, format: str = "json") -> str:
        """
        Serialize metrics as JSON (with summaries) or as a fixed-header CSV.

        Returns an empty string for an unknown format or a failed export.
        """
        if format not in ("json", "csv"):
            log.warning(f"Unsupported export format: {format}")
            return ""

        try:
            return self._serialize(format)
        except Exception as e:
            log.bind(format=format).error(f"Failed to export metrics: {str(e)}")
            return ""

    def _serialize(self, format: str) -> str:
        metrics = self.get_metrics()

        if format == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(CSV_HEADERS)
            for m in metrics:
                writer.writerow([_csv_value(value) for value in (
                    m.document_id,
                    m.event_type.value,
                    iso(m.timestamp),
                    m.duration,
                    m.memory_usage,
                    m.page_number,
                    m.total_pages,
                    m.error_type,
                    m.success,
                    m.user_agent,
                    m.viewport_size.width if m.viewport_size else None,
                    m.viewport_size.height if m.viewport_size else None,
                )])
            return buffer.getvalue().rstrip("\n")

        return json.dumps({
            "metrics": [m.to_dict() for m in metrics],
            "performanceSummary": self.get_performance_summary().to_dict(),
            "userAnalytics": [s.to_dict() for s in self.get_user_analytics_summary()],
            "exportedAt": iso(self._clock()),
        }, indent=2)

    def clear_old_metrics(self, older_than: datetime) -> int:
        """Drop records at or before ``older_than``"""
        with self._lock:
            removed = self._metrics.filter_in_place(lambda m: m.timestamp > older_than)
            remaining = len(self._metrics)

        if removed > 0:
            log.bind(removedCount=removed, remainingCount=remaining, olderThan=iso(older_than)).info(
                "Cleared old metrics"
            )
        return removed

    # Background memory sampling

    def sample_memory(self) -> None:
        if self.memory_probe is None:
            return

        try:
            reading = self.memory_probe.read()
        except Exception as e:
            log.debug(f"Memory probe unavailable: {str(e)}")
            return
        if not reading:
            return

        used, limit = reading
        if not limit:
            return

        usage_percent = used / limit * 100
        if usage_percent > self.memory_warning_percent:
            log.bind(usedMemory=used, memoryLimit=limit, usagePercent=usage_percent).warning(
                "High memory usage detected"
            )
            self.record_event(
                document_id="system",
                event_type=RenderingEventType.MEMORY_WARNING,
                success=False,
                memory_usage=used,
                additional_data={"memoryLimit": limit, "usagePercent": usage_percent},
            )

    def start_background(self, scheduler) -> None:
        if self._scheduler is not None or self.memory_probe is None:
            return
        scheduler.add_interval_job(
            self.sample_memory,
            job_id=MEMORY_SAMPLER_JOB_ID,
            name="Rendering memory sampler",
            seconds=self.memory_sample_interval_seconds,
        )
        self._scheduler = scheduler

    def destroy(self) -> None:
        """Stop the memory sampler and drop all state"""
        if self._scheduler is not None:
            self._scheduler.remove_job(MEMORY_SAMPLER_JOB_ID)
            self._scheduler = None

        with self._lock:
            self._metrics.clear()
            self._sessions.clear()
            self._finished_sessions.clear()
