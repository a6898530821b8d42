"""
Monitoring System
One context object that wires the metrics collector, diagnostic capture,
performance monitor and alerting system together and gates each by its
enable flag.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from flipbook_monitoring.config import Settings, get_settings
from flipbook_monitoring.errors import RenderingError
from flipbook_monitoring.models.diagnostics import DiagnosticCaptureConfig, DiagnosticReport
from flipbook_monitoring.models.rendering import (
    DocumentAnalyticsSummary,
    InteractionType,
    PerformanceSummary,
    RenderingEventType,
    UserAnalytics,
    ViewportSize,
)
from flipbook_monitoring.services.alerting_system import AlertingSystem
from flipbook_monitoring.services.diagnostic_capture import ClientEnvironment, DiagnosticCapture
from flipbook_monitoring.services.performance_monitor import PerformanceMonitor
from flipbook_monitoring.services.rendering_metrics import MetricsCollector, PsutilMemoryProbe
from flipbook_monitoring.utils.helpers import iso, utc_now
from flipbook_monitoring.utils.logger import log

CLEANUP_JOB_ID = "metrics_retention_cleanup"


@dataclass
class MonitoringConfig:
    enable_metrics: bool = True
    enable_diagnostics: bool = True
    enable_user_analytics: bool = True
    enable_performance_monitoring: bool = True
    enable_error_capture: bool = True
    metrics_retention_days: int = 30
    cleanup_interval_hours: int = 24
    diagnostic_capture_config: DiagnosticCaptureConfig = field(default_factory=DiagnosticCaptureConfig)

    @classmethod
    def from_settings(cls, settings: Settings) -> "MonitoringConfig":
        return cls(
            enable_metrics=settings.enable_metrics,
            enable_diagnostics=settings.enable_diagnostics,
            enable_user_analytics=settings.enable_user_analytics,
            enable_performance_monitoring=settings.enable_performance_monitoring,
            enable_error_capture=settings.enable_error_capture,
            metrics_retention_days=settings.metrics_retention_days,
            cleanup_interval_hours=settings.metrics_cleanup_interval_hours,
            diagnostic_capture_config=DiagnosticCaptureConfig.from_settings(settings),
        )


def _client_fields(client: Optional[ClientEnvironment]) -> Tuple[Optional[str], Optional[ViewportSize]]:
    """User agent and viewport as reported by the client, when it reported them"""
    if client is None:
        return None, None

    state = client.browser_state() if hasattr(client, "browser_state") else {}
    info = client.browser_info() if hasattr(client, "browser_info") else {}
    user_agent = (state or {}).get("userAgent") or (info or {}).get("userAgent")

    viewport = (state or {}).get("viewport")
    viewport_size = None
    if isinstance(viewport, dict) and viewport.get("width") is not None and viewport.get("height") is not None:
        viewport_size = ViewportSize(width=int(viewport["width"]), height=int(viewport["height"]))

    return user_agent, viewport_size


class MonitoringSystem:
    """
    Facade used by the API layer.

    Nothing here raises to the caller: internal failures are logged and the
    method returns None (or does nothing).
    """

    def __init__(
        self,
        config: Optional[MonitoringConfig] = None,
        settings: Optional[Settings] = None,
        scheduler=None,
        metrics_collector: Optional[MetricsCollector] = None,
        diagnostic_capture: Optional[DiagnosticCapture] = None,
        performance_monitor: Optional[PerformanceMonitor] = None,
        alerting_system: Optional[AlertingSystem] = None,
        clock=utc_now,
    ):
        self.settings = settings or get_settings()
        self.config = config or MonitoringConfig.from_settings(self.settings)
        self.scheduler = scheduler
        self.metrics_collector = metrics_collector
        self.diagnostic_capture = diagnostic_capture
        self.performance_monitor = performance_monitor
        self.alerting_system = alerting_system
        self._clock = clock
        self.initialized = False

    def initialize(self) -> None:
        if self.initialized:
            return

        log.bind(config=asdict(self.config)).info("Initializing monitoring system")

        if self.config.enable_metrics and self.metrics_collector is None:
            self.metrics_collector = MetricsCollector(
                memory_probe=PsutilMemoryProbe(),
                memory_warning_percent=self.settings.memory_warning_percent,
                memory_sample_interval_seconds=self.settings.memory_sample_interval_seconds,
                clock=self._clock,
            )
            log.info("Metrics collection initialized")

        if self.config.enable_diagnostics and self.diagnostic_capture is None:
            self.diagnostic_capture = DiagnosticCapture(
                config=self.config.diagnostic_capture_config,
                settings=self.settings,
                clock=self._clock,
            )
            log.info("Diagnostic capture initialized")

        if self.config.enable_performance_monitoring:
            if self.alerting_system is None:
                self.alerting_system = AlertingSystem(settings=self.settings, clock=self._clock)
            if self.performance_monitor is None:
                self.performance_monitor = PerformanceMonitor(
                    alerting_system=self.alerting_system,
                    realtime_window_minutes=self.settings.realtime_window_minutes,
                    assumed_conversion_concurrency=self.settings.assumed_conversion_concurrency,
                    clock=self._clock,
                )
            log.info("Performance monitoring initialized")

        if self.scheduler is not None:
            if self.metrics_collector is not None:
                self.metrics_collector.start_background(self.scheduler)
            self.scheduler.add_interval_job(
                self.cleanup_old_metrics,
                job_id=CLEANUP_JOB_ID,
                name="Metrics retention cleanup",
                hours=self.config.cleanup_interval_hours,
            )

        self.initialized = True
        log.info("Monitoring system initialized successfully")

    # Rendering lifecycle

    def record_render_start(
        self,
        document_id: str,
        pdf_url: str,
        file_size: Optional[int] = None,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        client: Optional[ClientEnvironment] = None,
    ) -> None:
        if not self.config.enable_metrics or self.metrics_collector is None:
            return

        try:
            if session_id and self.config.enable_user_analytics:
                self.metrics_collector.start_user_session(session_id, document_id, user_id)

            user_agent, viewport_size = _client_fields(client)
            self.metrics_collector.record_event(
                document_id=document_id,
                event_type=RenderingEventType.RENDER_START,
                success=True,
                pdf_url=pdf_url,
                file_size=file_size,
                user_agent=user_agent,
                viewport_size=viewport_size,
            )

            log.bind(
                documentId=document_id,
                pdfUrl=pdf_url,
                fileSize=file_size,
                sessionId=session_id,
                userId=user_id,
            ).info("Document render started")

        except Exception as e:
            log.bind(documentId=document_id, sessionId=session_id).error(
                f"Failed to record render start: {str(e)}"
            )

    def record_render_success(
        self,
        document_id: str,
        duration: float,
        total_pages: Optional[int] = None,
        memory_usage: Optional[int] = None,
        session_id: Optional[str] = None,
        client: Optional[ClientEnvironment] = None,
    ) -> None:
        if not self.config.enable_metrics or self.metrics_collector is None:
            return

        try:
            user_agent, viewport_size = _client_fields(client)
            self.metrics_collector.record_event(
                document_id=document_id,
                event_type=RenderingEventType.RENDER_SUCCESS,
                success=True,
                duration=duration,
                total_pages=total_pages,
                memory_usage=memory_usage,
                user_agent=user_agent,
                viewport_size=viewport_size,
            )

            log.bind(
                documentId=document_id,
                duration=duration,
                totalPages=total_pages,
                memoryUsage=memory_usage,
                sessionId=session_id,
            ).info("Document render completed successfully")

        except Exception as e:
            log.bind(documentId=document_id, sessionId=session_id).error(
                f"Failed to record render success: {str(e)}"
            )

    async def record_render_error(
        self,
        document_id: str,
        error: RenderingError,
        duration: Optional[float] = None,
        session_id: Optional[str] = None,
        client: Optional[ClientEnvironment] = None,
    ) -> Optional[DiagnosticReport]:
        """
        Record a failed render and capture diagnostics for it.

        Returns the diagnostic report, or None when diagnostics are disabled
        or the recording itself failed.
        """
        try:
            if self.config.enable_metrics and self.metrics_collector is not None:
                user_agent, viewport_size = _client_fields(client)
                self.metrics_collector.record_event(
                    document_id=document_id,
                    event_type=RenderingEventType.RENDER_ERROR,
                    success=False,
                    duration=duration,
                    error_type=error.type.value,
                    user_agent=user_agent,
                    viewport_size=viewport_size,
                    additional_data={
                        "errorMessage": error.message,
                        "errorSeverity": error.severity.value,
                        "recoverable": error.recoverable,
                        "retryable": error.retryable,
                    },
                )

            if session_id and self.config.enable_user_analytics and self.metrics_collector is not None:
                self.metrics_collector.record_user_interaction(session_id, InteractionType.ERROR, {
                    "errorType": error.type.value,
                    "errorMessage": error.message,
                    "errorSeverity": error.severity.value,
                })

            report = None
            if (
                self.config.enable_diagnostics
                and self.config.enable_error_capture
                and self.diagnostic_capture is not None
            ):
                report = await self.diagnostic_capture.capture_failure_diagnostics(
                    document_id,
                    error,
                    {"sessionId": session_id, "duration": duration},
                    environment=client,
                )

            log.bind(
                documentId=document_id,
                errorType=error.type.value,
                errorSeverity=error.severity.value,
                duration=duration,
                sessionId=session_id,
                diagnosticReportId=report.report_id if report else None,
            ).error(f"Document render failed: {error.message}")

            return report

        except Exception as e:
            log.bind(documentId=document_id, originalError=error.message, sessionId=session_id).error(
                f"Failed to record render error: {str(e)}"
            )
            return None

    def record_page_render(
        self,
        document_id: str,
        page_number: int,
        success: bool,
        duration: Optional[float] = None,
        error_type: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        if not self.config.enable_metrics or self.metrics_collector is None:
            return

        try:
            self.metrics_collector.record_event(
                document_id=document_id,
                event_type=(
                    RenderingEventType.PAGE_RENDER_SUCCESS if success else RenderingEventType.PAGE_RENDER_ERROR
                ),
                success=success,
                duration=duration,
                page_number=page_number,
                error_type=error_type,
            )

            if session_id and success and self.config.enable_user_analytics:
                self.metrics_collector.record_user_interaction(
                    session_id, InteractionType.PAGE_CHANGE, {"pageNumber": page_number}
                )

            log.bind(
                documentId=document_id,
                pageNumber=page_number,
                success=success,
                duration=duration,
                errorType=error_type,
                sessionId=session_id,
            ).debug("Page render recorded")

        except Exception as e:
            log.bind(documentId=document_id, pageNumber=page_number, sessionId=session_id).error(
                f"Failed to record page render: {str(e)}"
            )

    # User analytics

    def record_interaction(self, session_id: str, type: str, data: Optional[Dict[str, Any]] = None) -> None:
        if not self.config.enable_user_analytics or self.metrics_collector is None:
            return

        try:
            self.metrics_collector.record_user_interaction(session_id, type, data)
            log.bind(sessionId=session_id, type=str(type), data=data).debug("User interaction recorded")
        except Exception as e:
            log.bind(sessionId=session_id, type=str(type)).error(f"Failed to record user interaction: {str(e)}")

    def end_session(self, session_id: str) -> Optional[UserAnalytics]:
        if not self.config.enable_user_analytics or self.metrics_collector is None:
            return None

        try:
            return self.metrics_collector.end_user_session(session_id)
        except Exception as e:
            log.bind(sessionId=session_id).error(f"Failed to end user session: {str(e)}")
            return None

    # Reporting

    def get_performance_summary(
        self, time_range: Optional[Tuple[datetime, datetime]] = None
    ) -> Optional[PerformanceSummary]:
        if not self.config.enable_metrics or self.metrics_collector is None:
            return None

        try:
            return self.metrics_collector.get_performance_summary(time_range)
        except Exception as e:
            log.error(f"Failed to get performance summary: {str(e)}")
            return None

    def get_user_analytics_summary(self) -> Optional[List[DocumentAnalyticsSummary]]:
        if not self.config.enable_user_analytics or self.metrics_collector is None:
            return None

        try:
            return self.metrics_collector.get_user_analytics_summary()
        except Exception as e:
            log.error(f"Failed to get user analytics summary: {str(e)}")
            return None

    def export_metrics(self, format: str = "json") -> Optional[str]:
        if not self.config.enable_metrics or self.metrics_collector is None:
            return None

        try:
            return self.metrics_collector.export_metrics(format)
        except Exception as e:
            log.error(f"Failed to export metrics: {str(e)}")
            return None

    # Maintenance

    def cleanup_old_metrics(self) -> Optional[Dict[str, int]]:
        """Drop rendering and performance records older than the retention window"""
        cutoff = self._clock() - timedelta(days=self.config.metrics_retention_days)
        removed = {"renderingMetrics": 0, "performanceMetrics": 0}

        try:
            if self.metrics_collector is not None:
                removed["renderingMetrics"] = self.metrics_collector.clear_old_metrics(cutoff)
            if self.performance_monitor is not None:
                removed["performanceMetrics"] = self.performance_monitor.cleanup_old_metrics(cutoff)
        except Exception as e:
            log.error(f"Failed to clean up old metrics: {str(e)}")
            return None

        log.bind(
            cutoffDate=iso(cutoff),
            retentionDays=self.config.metrics_retention_days,
            **removed,
        ).info("Old metrics cleaned up")
        return removed

    def shutdown(self) -> None:
        if not self.initialized:
            return

        log.info("Shutting down monitoring system")

        try:
            if self.scheduler is not None:
                self.scheduler.remove_job(CLEANUP_JOB_ID)
            if self.metrics_collector is not None:
                self.metrics_collector.destroy()
            if self.diagnostic_capture is not None:
                self.diagnostic_capture.destroy()
            log.info("Monitoring system shut down successfully")
        except Exception as e:
            log.error(f"Error during monitoring system shutdown: {str(e)}")
        finally:
            self.initialized = False
