"""
Performance Monitor
Tracks document loads, conversions, errors and user interactions, and
computes success rates, latencies and error rates over a time window.
"""
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from flipbook_monitoring.models.performance import (
    PerformanceMetric,
    PerformanceMetricType,
    PerformanceStats,
    RealTimeMetrics,
)
from flipbook_monitoring.utils.bounded_log import BoundedLog
from flipbook_monitoring.utils.helpers import average, epoch_ms, safe_divide, utc_now
from flipbook_monitoring.utils.logger import log

MAX_METRICS = 10000

_LOAD_TYPES = (PerformanceMetricType.DOCUMENT_LOAD, PerformanceMetricType.CONVERSION)


def _duration_ms(start_time: datetime, end_time: datetime) -> float:
    return (end_time - start_time).total_seconds() * 1000


class PerformanceMonitor:
    """
    Flat in-memory log of operational metrics.

    The log keeps the newest ``MAX_METRICS`` records. Every document load
    runs an alert check against the attached AlertingSystem.
    """

    def __init__(
        self,
        alerting_system=None,
        realtime_window_minutes: int = 5,
        assumed_conversion_concurrency: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.alerting_system = alerting_system
        self.realtime_window = timedelta(minutes=realtime_window_minutes)
        # Estimate of parallel conversion workers; queue depth is derived from it, not measured
        self.assumed_conversion_concurrency = assumed_conversion_concurrency
        self._clock = clock
        self._metrics: BoundedLog[PerformanceMetric] = BoundedLog(MAX_METRICS, MAX_METRICS)
        self._lock = threading.RLock()

    def _store(self, metric: PerformanceMetric) -> None:
        with self._lock:
            self._metrics.append(metric)

    async def record_document_load(
        self,
        document_id: str,
        user_id: Optional[str],
        start_time: datetime,
        end_time: datetime,
        success: bool,
        error_type: Optional[str] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PerformanceMetric:
        duration = _duration_ms(start_time, end_time)
        metric = PerformanceMetric(
            id=f"load_{document_id}_{epoch_ms(self._clock())}",
            timestamp=end_time,
            type=PerformanceMetricType.DOCUMENT_LOAD,
            document_id=document_id,
            user_id=user_id,
            duration=duration,
            success=success,
            error_type=error_type,
            error_message=error_message,
            metadata={**(metadata or {}), "loadTimeMs": duration},
        )
        self._store(metric)

        await self.check_alerts()

        log.bind(documentId=document_id, userId=user_id, duration=duration, success=success).info(
            "Document load recorded"
        )
        return metric

    def record_conversion(
        self,
        document_id: str,
        start_time: datetime,
        end_time: datetime,
        success: bool,
        user_id: Optional[str] = None,
        error_type: Optional[str] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PerformanceMetric:
        duration = _duration_ms(start_time, end_time)
        metric = PerformanceMetric(
            id=f"conversion_{document_id}_{epoch_ms(self._clock())}",
            timestamp=end_time,
            type=PerformanceMetricType.CONVERSION,
            document_id=document_id,
            user_id=user_id,
            duration=duration,
            success=success,
            error_type=error_type,
            error_message=error_message,
            metadata={**(metadata or {}), "conversionTimeMs": duration},
        )
        self._store(metric)

        log.bind(documentId=document_id, duration=duration, success=success).info("Document conversion recorded")
        return metric

    def record_error(
        self,
        type: str,
        message: str,
        document_id: Optional[str] = None,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PerformanceMetric:
        now = self._clock()
        metric = PerformanceMetric(
            id=f"error_{epoch_ms(now)}",
            timestamp=now,
            type=PerformanceMetricType.ERROR,
            document_id=document_id,
            user_id=user_id,
            success=False,
            error_type=type,
            error_message=message,
            metadata=dict(metadata or {}),
        )
        self._store(metric)

        log.bind(type=type, message=message, documentId=document_id, userId=user_id).error("Error recorded")
        return metric

    def record_user_interaction(
        self,
        action: str,
        user_id: str,
        document_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PerformanceMetric:
        now = self._clock()
        metric = PerformanceMetric(
            id=f"interaction_{user_id}_{epoch_ms(now)}",
            timestamp=now,
            type=PerformanceMetricType.USER_INTERACTION,
            document_id=document_id,
            user_id=user_id,
            success=True,
            metadata={"action": action, **(metadata or {})},
        )
        self._store(metric)
        return metric

    def _metrics_in_range(self, start: datetime, end: datetime) -> List[PerformanceMetric]:
        with self._lock:
            return [m for m in self._metrics if start <= m.timestamp <= end]

    def get_performance_stats(self, start_date: datetime, end_date: datetime) -> PerformanceStats:
        metrics = self._metrics_in_range(start_date, end_date)

        loads = [m for m in metrics if m.type == PerformanceMetricType.DOCUMENT_LOAD]
        conversions = [m for m in metrics if m.type == PerformanceMetricType.CONVERSION]
        errors = [m for m in metrics if m.type == PerformanceMetricType.ERROR]

        successful_loads = [m for m in loads if m.success]
        success_rate = safe_divide(len(successful_loads), len(loads)) * 100

        # Averages only count successful entries with a duration
        average_load_time = average(m.duration for m in loads if m.success and m.duration)
        average_conversion_time = average(m.duration for m in conversions if m.success and m.duration)

        error_counts: Dict[str, int] = {}
        for metric in errors:
            if metric.error_type:
                error_counts[metric.error_type] = error_counts.get(metric.error_type, 0) + 1

        # Failed loads and conversions carry their own error type as well
        for metric in loads + conversions:
            if not metric.success and metric.error_type:
                error_counts[metric.error_type] = error_counts.get(metric.error_type, 0) + 1

        relevant_operations = len(loads) + len(conversions)
        error_rate_by_type = {
            error_type: safe_divide(count, relevant_operations) * 100
            for error_type, count in error_counts.items()
        }

        return PerformanceStats(
            document_loading_success_rate=success_rate,
            average_conversion_time=average_conversion_time,
            average_load_time=average_load_time,
            error_rate_by_type=error_rate_by_type,
            total_document_loads=len(loads),
            total_conversions=len(conversions),
            total_errors=len(errors),
            start=start_date,
            end=end_date,
        )

    def get_real_time_metrics(self) -> RealTimeMetrics:
        now = self._clock()
        recent = self._metrics_in_range(now - self.realtime_window, now)

        # Conversions recorded without a terminal success or error tag
        active_conversions = len([
            m for m in recent
            if m.type == PerformanceMetricType.CONVERSION and not m.success and not m.error_type
        ])
        queue_depth = max(0, active_conversions - self.assumed_conversion_concurrency)

        operations = len([m for m in recent if m.type in _LOAD_TYPES])
        error_count = len([m for m in recent if m.type == PerformanceMetricType.ERROR])
        current_error_rate = safe_divide(error_count, operations) * 100

        average_response_time = average(m.duration for m in recent if m.success and m.duration)

        return RealTimeMetrics(
            active_conversions=active_conversions,
            queue_depth=queue_depth,
            current_error_rate=current_error_rate,
            average_response_time=average_response_time,
        )

    async def check_alerts(self) -> None:
        if self.alerting_system is None:
            return
        try:
            realtime = self.get_real_time_metrics()
            await self.alerting_system.check_and_trigger_alerts(realtime.to_alert_metrics())
        except Exception as e:
            log.error(f"Alert check failed: {str(e)}")

    def export_metrics(self, start_date: datetime, end_date: datetime) -> List[PerformanceMetric]:
        return self._metrics_in_range(start_date, end_date)

    def cleanup_old_metrics(self, older_than: datetime) -> int:
        with self._lock:
            removed = self._metrics.filter_in_place(lambda m: m.timestamp >= older_than)
        log.bind(removedCount=removed).info("Cleaned up old metrics")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)
