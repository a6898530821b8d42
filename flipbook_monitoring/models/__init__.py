"""
Monitoring records
"""
from flipbook_monitoring.models.rendering import (
    RenderingEventType,
    InteractionType,
    ViewportSize,
    RenderingMetrics,
    InteractionEvent,
    UserAnalytics,
    ErrorCount,
    PerformanceSummary,
    DocumentAnalyticsSummary,
)
from flipbook_monitoring.models.diagnostics import (
    DiagnosticCaptureConfig,
    ConsoleErrorEntry,
    NetworkLogEntry,
    BrowserStateSnapshot,
    DocumentStateSnapshot,
    PerformanceEntry,
    DiagnosticReport,
)
from flipbook_monitoring.models.performance import (
    PerformanceMetricType,
    PerformanceMetric,
    PerformanceStats,
    RealTimeMetrics,
)
from flipbook_monitoring.models.alerts import (
    AlertSeverity,
    Comparison,
    AlertRule,
    AlertChannel,
    Alert,
    AlertStats,
    DEFAULT_ALERT_RULES,
)

__all__ = [
    "RenderingEventType",
    "InteractionType",
    "ViewportSize",
    "RenderingMetrics",
    "InteractionEvent",
    "UserAnalytics",
    "ErrorCount",
    "PerformanceSummary",
    "DocumentAnalyticsSummary",
    "DiagnosticCaptureConfig",
    "ConsoleErrorEntry",
    "NetworkLogEntry",
    "BrowserStateSnapshot",
    "DocumentStateSnapshot",
    "PerformanceEntry",
    "DiagnosticReport",
    "PerformanceMetricType",
    "PerformanceMetric",
    "PerformanceStats",
    "RealTimeMetrics",
    "AlertSeverity",
    "Comparison",
    "AlertRule",
    "AlertChannel",
    "Alert",
    "AlertStats",
    "DEFAULT_ALERT_RULES",
]
