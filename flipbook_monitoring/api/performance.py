"""
Performance endpoints
Real-time metrics, windowed statistics, raw export, metric ingestion and
retention cleanup for the performance monitor.
"""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flipbook_monitoring.api.deps import error_response, get_monitoring_system
from flipbook_monitoring.services.monitoring_system import MonitoringSystem
from flipbook_monitoring.utils.helpers import iso, parse_datetime, utc_now
from flipbook_monitoring.utils.logger import log

router = APIRouter(prefix="/api/monitoring/performance", tags=["performance"])

VALID_TYPES = ("realtime", "stats", "export")


class PerformanceEventRequest(BaseModel):
    action: str
    documentId: Optional[str] = None
    userId: Optional[str] = None
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    success: Optional[bool] = None
    errorType: Optional[str] = None
    errorMessage: Optional[str] = None
    type: Optional[str] = None
    message: Optional[str] = None
    interactionAction: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


def _missing(body: PerformanceEventRequest, *fields: str) -> list:
    return [name for name in fields if getattr(body, name) is None]


@router.get("")
async def get_performance(
    type: str = Query("realtime", description="realtime, stats, or export"),
    startDate: Optional[str] = Query(None, description="Window start (ISO 8601)"),
    endDate: Optional[str] = Query(None, description="Window end (ISO 8601)"),
    monitoring: MonitoringSystem = Depends(get_monitoring_system),
):
    """Real-time metrics by default; statistics or an export over a date window"""
    if type not in VALID_TYPES:
        return error_response(400, "Invalid type parameter. Use: realtime, stats, or export")

    try:
        monitor = monitoring.performance_monitor

        if type == "realtime":
            return {
                "success": True,
                "data": monitor.get_real_time_metrics().to_dict(),
                "timestamp": iso(utc_now()),
            }

        if type == "stats" and not (startDate and endDate):
            return error_response(400, "startDate and endDate are required for stats")

        try:
            start = parse_datetime(startDate) if startDate else datetime.min.replace(tzinfo=timezone.utc)
            end = parse_datetime(endDate) if endDate else utc_now()
        except ValueError:
            return error_response(400, "Invalid date format")

        if type == "stats":
            return {"success": True, "data": monitor.get_performance_stats(start, end).to_dict()}

        metrics = monitor.export_metrics(start, end)
        return {
            "success": True,
            "data": [metric.to_dict() for metric in metrics],
            "count": len(metrics),
        }

    except Exception as e:
        log.error(f"Error getting performance metrics: {str(e)}")
        return error_response(500, "Internal server error")


@router.post("")
async def record_performance_metric(
    body: PerformanceEventRequest,
    monitoring: MonitoringSystem = Depends(get_monitoring_system),
):
    """Record a document load, conversion, error or user interaction"""
    try:
        monitor = monitoring.performance_monitor

        if body.action in ("recordDocumentLoad", "recordConversion"):
            missing = _missing(body, "documentId", "startTime", "endTime", "success")
            if missing:
                return error_response(400, f"Missing required fields: {', '.join(missing)}")
            try:
                start_time = parse_datetime(body.startTime)
                end_time = parse_datetime(body.endTime)
            except ValueError:
                return error_response(400, "Invalid date format")

            if body.action == "recordDocumentLoad":
                await monitor.record_document_load(
                    document_id=body.documentId,
                    user_id=body.userId,
                    start_time=start_time,
                    end_time=end_time,
                    success=body.success,
                    error_type=body.errorType,
                    error_message=body.errorMessage,
                    metadata=body.metadata,
                )
            else:
                monitor.record_conversion(
                    document_id=body.documentId,
                    start_time=start_time,
                    end_time=end_time,
                    success=body.success,
                    user_id=body.userId,
                    error_type=body.errorType,
                    error_message=body.errorMessage,
                    metadata=body.metadata,
                )

        elif body.action == "recordError":
            missing = _missing(body, "type", "message")
            if missing:
                return error_response(400, f"Missing required fields: {', '.join(missing)}")
            monitor.record_error(
                type=body.type,
                message=body.message,
                document_id=body.documentId,
                user_id=body.userId,
                metadata=body.metadata,
            )

        elif body.action == "recordUserInteraction":
            missing = _missing(body, "interactionAction", "userId")
            if missing:
                return error_response(400, f"Missing required fields: {', '.join(missing)}")
            monitor.record_user_interaction(
                action=body.interactionAction,
                user_id=body.userId,
                document_id=body.documentId,
                metadata=body.metadata,
            )

        else:
            return error_response(400, "Invalid action")

        return {"success": True, "message": "Metric recorded successfully"}

    except Exception as e:
        log.error(f"Error recording performance metric: {str(e)}")
        return error_response(500, "Internal server error")


@router.delete("")
async def cleanup_performance_metrics(
    olderThan: Optional[str] = Query(None, description="Drop metrics older than this instant (ISO 8601)"),
    monitoring: MonitoringSystem = Depends(get_monitoring_system),
):
    """Drop performance metrics older than a cutoff"""
    if not olderThan:
        return error_response(400, "olderThan parameter is required")

    try:
        cutoff = parse_datetime(olderThan)
    except ValueError:
        return error_response(400, "Invalid date format")

    try:
        removed = monitoring.performance_monitor.cleanup_old_metrics(cutoff)
        return {"success": True, "message": f"Cleaned up {removed} old metrics"}

    except Exception as e:
        log.error(f"Error cleaning up performance metrics: {str(e)}")
        return error_response(500, "Internal server error")
