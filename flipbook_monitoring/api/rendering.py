"""
Rendering endpoints
Browser-facing entry into the monitoring system: render lifecycle events,
page renders, interactions and sessions, plus summaries and export.
"""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel
from typing import Any, Dict, List, Optional

from flipbook_monitoring.api.deps import error_response, get_monitoring_system
from flipbook_monitoring.errors import (
    RenderingErrorType,
    create_diagnostics,
    create_rendering_error,
    parse_rendering_error,
)
from flipbook_monitoring.services.diagnostic_capture import ReportedClientEnvironment
from flipbook_monitoring.services.monitoring_system import MonitoringSystem
from flipbook_monitoring.utils.helpers import parse_datetime
from flipbook_monitoring.utils.logger import log

router = APIRouter(prefix="/api/monitoring/rendering", tags=["rendering"])

EXPORT_MEDIA_TYPES = {"json": "application/json", "csv": "text/csv"}


class ClientState(BaseModel):
    """State a browser reports about itself"""
    browserState: Optional[Dict[str, Any]] = None
    browserInfo: Optional[Dict[str, Any]] = None
    documentHtml: Optional[str] = None
    performanceEntries: Optional[List[Dict[str, Any]]] = None
    consoleErrors: Optional[List[Dict[str, Any]]] = None
    networkLogs: Optional[List[Dict[str, Any]]] = None

    def environment(self) -> ReportedClientEnvironment:
        return ReportedClientEnvironment(self.model_dump(exclude_none=True))


class RenderStartRequest(BaseModel):
    documentId: str
    pdfUrl: str
    fileSize: Optional[int] = None
    sessionId: Optional[str] = None
    userId: Optional[str] = None
    client: Optional[ClientState] = None


class RenderSuccessRequest(BaseModel):
    documentId: str
    duration: float
    totalPages: Optional[int] = None
    memoryUsage: Optional[int] = None
    sessionId: Optional[str] = None
    client: Optional[ClientState] = None


class RenderErrorRequest(BaseModel):
    documentId: str
    errorType: Optional[str] = None
    message: Optional[str] = None
    pdfUrl: Optional[str] = None
    duration: Optional[float] = None
    sessionId: Optional[str] = None
    client: Optional[ClientState] = None


class PageRenderRequest(BaseModel):
    documentId: str
    pageNumber: int
    success: bool
    duration: Optional[float] = None
    errorType: Optional[str] = None
    sessionId: Optional[str] = None


class InteractionRequest(BaseModel):
    sessionId: str
    type: str
    data: Optional[Dict[str, Any]] = None


def _forward_client_logs(monitoring: MonitoringSystem, client: Optional[ClientState]) -> None:
    """Feed console errors and network calls reported by the browser into the capture buffers"""
    capture = monitoring.diagnostic_capture
    if client is None or capture is None:
        return

    for entry in client.consoleErrors or []:
        capture.record_console_error(
            level=entry.get("level", "error"),
            message=str(entry.get("message", "")),
            stack=entry.get("stack"),
            source=entry.get("source"),
            line=entry.get("line"),
            column=entry.get("column"),
        )

    for entry in client.networkLogs or []:
        if not entry.get("url"):
            continue
        capture.record_network_request(
            url=entry["url"],
            method=entry.get("method", "GET"),
            status=entry.get("status"),
            status_text=entry.get("statusText"),
            duration=entry.get("duration"),
            error=entry.get("error"),
        )


@router.post("/start")
async def render_start(body: RenderStartRequest, monitoring: MonitoringSystem = Depends(get_monitoring_system)):
    """A document started rendering; opens a viewing session when sessionId is given"""
    monitoring.record_render_start(
        body.documentId,
        body.pdfUrl,
        file_size=body.fileSize,
        session_id=body.sessionId,
        user_id=body.userId,
        client=body.client.environment() if body.client else None,
    )
    return {"success": True}


@router.post("/success")
async def render_success(body: RenderSuccessRequest, monitoring: MonitoringSystem = Depends(get_monitoring_system)):
    """A document finished rendering"""
    monitoring.record_render_success(
        body.documentId,
        body.duration,
        total_pages=body.totalPages,
        memory_usage=body.memoryUsage,
        session_id=body.sessionId,
        client=body.client.environment() if body.client else None,
    )
    return {"success": True}


@router.post("/error")
async def render_error(body: RenderErrorRequest, monitoring: MonitoringSystem = Depends(get_monitoring_system)):
    """
    A document failed to render.

    A known errorType is used as is; otherwise the type is inferred from the
    message. Returns the classified error and the diagnostic report id.
    """
    try:
        error_type = RenderingErrorType(body.errorType) if body.errorType else None
    except ValueError:
        error_type = None

    if error_type is not None:
        error = create_rendering_error(
            error_type,
            body.message,
            diagnostics=create_diagnostics(body.documentId, body.pdfUrl or "", error_type),
        )
    else:
        error = parse_rendering_error(Exception(body.message or body.errorType or "Unknown rendering error"))
        error.diagnostics = create_diagnostics(body.documentId, body.pdfUrl or "", error.type)

    _forward_client_logs(monitoring, body.client)

    report = await monitoring.record_render_error(
        body.documentId,
        error,
        duration=body.duration,
        session_id=body.sessionId,
        client=body.client.environment() if body.client else None,
    )
    return {
        "success": True,
        "error": error.to_dict(),
        "reportId": report.report_id if report else None,
    }


@router.post("/page")
async def page_render(body: PageRenderRequest, monitoring: MonitoringSystem = Depends(get_monitoring_system)):
    """A single page rendered (or failed to)"""
    monitoring.record_page_render(
        body.documentId,
        body.pageNumber,
        body.success,
        duration=body.duration,
        error_type=body.errorType,
        session_id=body.sessionId,
    )
    return {"success": True}


@router.post("/interaction")
async def interaction(body: InteractionRequest, monitoring: MonitoringSystem = Depends(get_monitoring_system)):
    """Zoom, scroll, page change or error within a viewing session"""
    monitoring.record_interaction(body.sessionId, body.type, body.data)
    return {"success": True}


@router.post("/sessions/{session_id}/end")
async def end_session(session_id: str, monitoring: MonitoringSystem = Depends(get_monitoring_system)):
    """Finalize a viewing session"""
    analytics = monitoring.end_session(session_id)
    if analytics is None:
        return error_response(404, "Session not found")
    return {"success": True, "data": analytics.to_dict()}


@router.get("/summary")
async def performance_summary(
    start: Optional[str] = Query(None, description="Window start (ISO 8601)"),
    end: Optional[str] = Query(None, description="Window end (ISO 8601)"),
    monitoring: MonitoringSystem = Depends(get_monitoring_system),
):
    """Rendering performance summary, optionally over a time window"""
    time_range = None
    if start and end:
        try:
            time_range = (parse_datetime(start), parse_datetime(end))
        except ValueError:
            return error_response(400, "Invalid date format")

    summary = monitoring.get_performance_summary(time_range)
    if summary is None:
        return error_response(503, "Metrics collection is unavailable")
    return {"success": True, "data": summary.to_dict()}


@router.get("/analytics")
async def user_analytics(monitoring: MonitoringSystem = Depends(get_monitoring_system)):
    """Per document viewing analytics over finished sessions"""
    summary = monitoring.get_user_analytics_summary()
    if summary is None:
        return error_response(503, "User analytics are unavailable")
    return {"success": True, "data": [entry.to_dict() for entry in summary], "count": len(summary)}


@router.get("/export")
async def export_metrics(
    format: str = Query("json", description="json or csv"),
    monitoring: MonitoringSystem = Depends(get_monitoring_system),
):
    """Export rendering metrics as JSON or CSV"""
    if format not in EXPORT_MEDIA_TYPES:
        return error_response(400, "Invalid format. Use: json or csv")

    exported = monitoring.export_metrics(format)
    if exported is None:
        log.warning(f"Metrics export unavailable (format={format})")
        return error_response(503, "Metrics export is unavailable")

    return Response(
        content=exported,
        media_type=EXPORT_MEDIA_TYPES[format],
        headers={"Content-Disposition": f"attachment; filename=rendering-metrics.{format}"},
    )
