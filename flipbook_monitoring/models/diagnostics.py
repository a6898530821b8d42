"""
Diagnostic report records captured when a render fails
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from flipbook_monitoring.errors import RenderingDiagnostics, RenderingError
from flipbook_monitoring.utils.helpers import iso


@dataclass
class DiagnosticCaptureConfig:
    capture_screenshots: bool = True
    capture_network_logs: bool = True
    capture_console_errors: bool = True
    capture_performance_metrics: bool = True
    capture_browser_state: bool = True
    capture_document_state: bool = True
    max_log_entries: int = 100
    max_screenshot_size: int = 1024 * 1024  # bytes

    @classmethod
    def from_settings(cls, settings) -> "DiagnosticCaptureConfig":
        return cls(
            capture_screenshots=settings.capture_screenshots,
            capture_network_logs=settings.capture_network_logs,
            capture_console_errors=settings.capture_console_errors,
            capture_performance_metrics=settings.capture_performance_metrics,
            capture_browser_state=settings.capture_browser_state,
            capture_document_state=settings.capture_document_state,
            max_log_entries=settings.max_log_entries,
            max_screenshot_size=settings.max_screenshot_size,
        )


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass
class ConsoleErrorEntry:
    timestamp: datetime
    level: str  # error | warn | info | debug
    message: str
    stack: Optional[str] = None
    source: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "timestamp": iso(self.timestamp),
            "level": self.level,
            "message": self.message,
            "stack": self.stack,
            "source": self.source,
            "line": self.line,
            "column": self.column,
        })


@dataclass
class NetworkLogEntry:
    timestamp: datetime
    url: str
    method: str
    status: Optional[int] = None
    status_text: Optional[str] = None
    request_headers: Optional[Dict[str, str]] = None
    response_headers: Optional[Dict[str, str]] = None
    request_body: Optional[str] = None
    duration: Optional[float] = None  # ms
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "timestamp": iso(self.timestamp),
            "url": self.url,
            "method": self.method,
            "status": self.status,
            "statusText": self.status_text,
            "requestHeaders": self.request_headers,
            "responseHeaders": self.response_headers,
            "requestBody": self.request_body,
            "duration": self.duration,
            "error": self.error,
        })


@dataclass
class BrowserStateSnapshot:
    """Client browser state. Every field is optional; an empty snapshot means unavailable."""
    timestamp: Optional[datetime] = None
    url: Optional[str] = None
    user_agent: Optional[str] = None
    viewport: Optional[Dict[str, int]] = None
    scroll_position: Optional[Dict[str, int]] = None
    active_element: Optional[str] = None
    visibility_state: Optional[str] = None
    connection_type: Optional[str] = None
    online_status: Optional[bool] = None
    memory_info: Optional[Dict[str, int]] = None
    storage_quota: Optional[Dict[str, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "timestamp": iso(self.timestamp),
            "url": self.url,
            "userAgent": self.user_agent,
            "viewport": self.viewport,
            "scrollPosition": self.scroll_position,
            "activeElement": self.active_element,
            "visibilityState": self.visibility_state,
            "connectionType": self.connection_type,
            "onlineStatus": self.online_status,
            "memoryInfo": self.memory_info,
            "storageQuota": self.storage_quota,
        })


@dataclass
class DocumentStateSnapshot:
    timestamp: Optional[datetime] = None
    document_id: Optional[str] = None
    pdf_url: Optional[str] = None
    current_page: Optional[int] = None
    total_pages: Optional[int] = None
    zoom_level: Optional[float] = None
    view_mode: Optional[str] = None
    loading_state: Optional[str] = None
    error_state: Optional[str] = None
    canvas_elements: Optional[int] = None
    image_elements: Optional[int] = None
    dom_element_count: Optional[int] = None
    rendering_progress: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "timestamp": iso(self.timestamp),
            "documentId": self.document_id,
            "pdfUrl": self.pdf_url,
            "currentPage": self.current_page,
            "totalPages": self.total_pages,
            "zoomLevel": self.zoom_level,
            "viewMode": self.view_mode,
            "loadingState": self.loading_state,
            "errorState": self.error_state,
            "canvasElements": self.canvas_elements,
            "imageElements": self.image_elements,
            "domElementCount": self.dom_element_count,
            "renderingProgress": self.rendering_progress,
        })


@dataclass
class PerformanceEntry:
    name: str
    entry_type: str
    start_time: float = 0.0
    duration: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerformanceEntry":
        return cls(
            name=str(data.get("name", "")),
            entry_type=str(data.get("entryType", data.get("entry_type", ""))),
            start_time=float(data.get("startTime", data.get("start_time", 0)) or 0),
            duration=float(data.get("duration", 0) or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "entryType": self.entry_type,
            "startTime": self.start_time,
            "duration": self.duration,
        }


@dataclass
class DiagnosticReport:
    report_id: str
    timestamp: datetime
    document_id: str
    error: RenderingError
    diagnostics: Optional[RenderingDiagnostics]
    console_errors: List[ConsoleErrorEntry] = field(default_factory=list)
    network_logs: List[NetworkLogEntry] = field(default_factory=list)
    browser_state: BrowserStateSnapshot = field(default_factory=BrowserStateSnapshot)
    document_state: DocumentStateSnapshot = field(default_factory=DocumentStateSnapshot)
    screenshot: Optional[str] = None  # base64 data URL
    performance_entries: List[PerformanceEntry] = field(default_factory=list)
    additional_context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "reportId": self.report_id,
            "timestamp": iso(self.timestamp),
            "documentId": self.document_id,
            "error": self.error.to_dict(),
            "diagnostics": self.diagnostics.to_dict() if self.diagnostics else {},
            "consoleErrors": [entry.to_dict() for entry in self.console_errors],
            "networkLogs": [entry.to_dict() for entry in self.network_logs],
            "browserState": self.browser_state.to_dict(),
            "documentState": self.document_state.to_dict(),
            "performanceEntries": [entry.to_dict() for entry in self.performance_entries],
        }
        if self.screenshot is not None:
            data["screenshot"] = self.screenshot
        if self.additional_context is not None:
            data["additionalContext"] = self.additional_context
        return data
