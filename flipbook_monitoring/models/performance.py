"""
Operational performance records: document loads, conversions, errors, interactions
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from flipbook_monitoring.utils.helpers import iso


class PerformanceMetricType(str, Enum):
    DOCUMENT_LOAD = "document_load"
    CONVERSION = "conversion"
    ERROR = "error"
    USER_INTERACTION = "user_interaction"


@dataclass
class PerformanceMetric:
    id: str
    timestamp: datetime
    type: PerformanceMetricType
    success: bool
    document_id: Optional[str] = None
    user_id: Optional[str] = None
    duration: Optional[float] = None  # ms
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "timestamp": iso(self.timestamp),
            "type": self.type.value,
            "success": self.success,
            "metadata": self.metadata,
        }
        optional = {
            "documentId": self.document_id,
            "userId": self.user_id,
            "duration": self.duration,
            "errorType": self.error_type,
            "errorMessage": self.error_message,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


@dataclass
class PerformanceStats:
    document_loading_success_rate: float
    average_conversion_time: float
    average_load_time: float
    error_rate_by_type: Dict[str, float]
    total_document_loads: int
    total_conversions: int
    total_errors: int
    start: datetime
    end: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentLoadingSuccessRate": self.document_loading_success_rate,
            "averageConversionTime": self.average_conversion_time,
            "averageLoadTime": self.average_load_time,
            "errorRateByType": dict(self.error_rate_by_type),
            "totalDocumentLoads": self.total_document_loads,
            "totalConversions": self.total_conversions,
            "totalErrors": self.total_errors,
            "timeRange": {"start": iso(self.start), "end": iso(self.end)},
        }


@dataclass
class RealTimeMetrics:
    active_conversions: int
    queue_depth: int
    current_error_rate: float
    average_response_time: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activeConversions": self.active_conversions,
            "queueDepth": self.queue_depth,
            "currentErrorRate": self.current_error_rate,
            "averageResponseTime": self.average_response_time,
        }

    def to_alert_metrics(self) -> Dict[str, float]:
        """Metric map evaluated by the alert rules"""
        return {
            "conversion_failure_rate": self.current_error_rate,
            "average_load_time": self.average_response_time,
            "queue_depth": self.queue_depth,
            "current_error_rate": self.current_error_rate,
        }
