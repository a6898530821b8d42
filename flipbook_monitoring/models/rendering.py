"""
Rendering lifecycle events and per-session viewing analytics
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from flipbook_monitoring.utils.helpers import iso


class RenderingEventType(str, Enum):
    RENDER_START = "render_start"
    RENDER_SUCCESS = "render_success"
    RENDER_ERROR = "render_error"
    PAGE_RENDER_START = "page_render_start"
    PAGE_RENDER_SUCCESS = "page_render_success"
    PAGE_RENDER_ERROR = "page_render_error"
    LOAD_START = "load_start"
    LOAD_SUCCESS = "load_success"
    LOAD_ERROR = "load_error"
    MEMORY_WARNING = "memory_warning"
    PERFORMANCE_DEGRADATION = "performance_degradation"


class InteractionType(str, Enum):
    ZOOM = "zoom"
    SCROLL = "scroll"
    PAGE_CHANGE = "page_change"
    ERROR = "error"


@dataclass(frozen=True)
class ViewportSize:
    width: int
    height: int

    def to_dict(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}


@dataclass(frozen=True)
class RenderingMetrics:
    """One recorded rendering event. Never mutated after it is stored."""
    document_id: str
    event_type: RenderingEventType
    timestamp: datetime
    success: bool
    duration: Optional[float] = None
    memory_usage: Optional[int] = None
    page_number: Optional[int] = None
    total_pages: Optional[int] = None
    error_type: Optional[str] = None
    user_agent: Optional[str] = None
    viewport_size: Optional[ViewportSize] = None
    pdf_url: Optional[str] = None
    file_size: Optional[int] = None
    additional_data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "documentId": self.document_id,
            "eventType": self.event_type.value,
            "timestamp": iso(self.timestamp),
            "success": self.success,
        }
        optional = {
            "duration": self.duration,
            "memoryUsage": self.memory_usage,
            "pageNumber": self.page_number,
            "totalPages": self.total_pages,
            "errorType": self.error_type,
            "userAgent": self.user_agent,
            "viewportSize": self.viewport_size.to_dict() if self.viewport_size else None,
            "pdfUrl": self.pdf_url,
            "fileSize": self.file_size,
            "additionalData": self.additional_data,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


@dataclass
class InteractionEvent:
    type: InteractionType
    timestamp: datetime
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": iso(self.timestamp),
            "data": self.data,
        }


@dataclass
class UserAnalytics:
    """Aggregate for one viewing session; finalized when the session ends"""
    session_id: str
    document_id: str
    view_start_time: datetime
    user_id: Optional[str] = None
    view_end_time: Optional[datetime] = None
    total_view_time: Optional[float] = None  # ms
    pages_viewed: List[int] = field(default_factory=list)
    interaction_events: List[InteractionEvent] = field(default_factory=list)
    rendering_metrics: List[RenderingMetrics] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "documentId": self.document_id,
            "userId": self.user_id,
            "viewStartTime": iso(self.view_start_time),
            "viewEndTime": iso(self.view_end_time),
            "totalViewTime": self.total_view_time,
            "pagesViewed": list(self.pages_viewed),
            "interactionEvents": [event.to_dict() for event in self.interaction_events],
            "renderingMetrics": [metric.to_dict() for metric in self.rendering_metrics],
        }


@dataclass
class ErrorCount:
    error_type: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"errorType": self.error_type, "count": self.count}


@dataclass
class PerformanceSummary:
    total_renders: int
    successful_renders: int
    failed_renders: int
    success_rate: float
    average_load_time: float
    average_render_time: float
    average_memory_usage: float
    common_errors: List[ErrorCount]
    start: datetime
    end: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRenders": self.total_renders,
            "successfulRenders": self.successful_renders,
            "failedRenders": self.failed_renders,
            "successRate": self.success_rate,
            "averageLoadTime": self.average_load_time,
            "averageRenderTime": self.average_render_time,
            "averageMemoryUsage": self.average_memory_usage,
            "commonErrors": [error.to_dict() for error in self.common_errors],
            "timeRange": {"start": iso(self.start), "end": iso(self.end)},
        }


@dataclass
class DocumentAnalyticsSummary:
    document_id: str
    total_sessions: int
    average_view_time: float
    total_page_views: int
    success_rate: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "totalSessions": self.total_sessions,
            "averageViewTime": self.average_view_time,
            "totalPageViews": self.total_page_views,
            "successRate": self.success_rate,
        }
