"""
Alert endpoints
List alerts and statistics, fire test notifications, trigger an alert pass
by hand and update rules and channels.
"""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from typing import Any, Dict, Optional

from flipbook_monitoring.api.deps import error_response, get_monitoring_system
from flipbook_monitoring.services.monitoring_system import MonitoringSystem
from flipbook_monitoring.utils.helpers import parse_datetime
from flipbook_monitoring.utils.logger import log

router = APIRouter(prefix="/api/monitoring/alerts", tags=["alerts"])


class AlertActionRequest(BaseModel):
    metrics: Optional[Dict[str, float]] = None


class AlertConfigRequest(BaseModel):
    ruleId: Optional[str] = None
    channelType: Optional[str] = None
    updates: Optional[Dict[str, Any]] = None


@router.get("")
async def get_alerts(
    action: Optional[str] = Query(None, description="Use 'stats' for alert statistics"),
    resolved: Optional[bool] = Query(None, description="Filter by resolution state"),
    severity: Optional[str] = Query(None, description="Filter by severity: low, medium, high, critical"),
    metric: Optional[str] = Query(None, description="Filter by metric name"),
    limit: Optional[int] = Query(None, description="Max alerts to return"),
    start: Optional[str] = Query(None, description="Stats window start (ISO 8601)"),
    end: Optional[str] = Query(None, description="Stats window end (ISO 8601)"),
    monitoring: MonitoringSystem = Depends(get_monitoring_system),
):
    """List alerts, newest first, or alert statistics with action=stats"""
    try:
        alerting = monitoring.alerting_system

        if action == "stats":
            time_range = (parse_datetime(start), parse_datetime(end)) if start and end else (None, None)
            stats = alerting.get_alert_stats(*time_range)
            return {"success": True, "data": stats.to_dict()}

        alerts = alerting.get_alerts(resolved=resolved, severity=severity, metric=metric, limit=limit)
        return {
            "success": True,
            "data": [alert.to_dict() for alert in alerts],
            "count": len(alerts),
        }

    except Exception as e:
        log.error(f"Error getting alerts: {str(e)}")
        return error_response(500, "Failed to get alerts")


@router.post("")
async def post_alert_action(
    action: Optional[str] = Query(None, description="test or trigger"),
    body: Optional[AlertActionRequest] = None,
    monitoring: MonitoringSystem = Depends(get_monitoring_system),
):
    """Send test notifications, or run an alert pass over the posted metrics"""
    try:
        alerting = monitoring.alerting_system

        if action == "test":
            results = await alerting.test_notifications()
            return {"success": True, "data": results, "message": "Test notifications sent"}

        if action == "trigger":
            if body is None or not body.metrics:
                return error_response(400, "Metrics are required")

            triggered = await alerting.check_and_trigger_alerts(body.metrics)
            return {
                "success": True,
                "data": [alert.to_dict() for alert in triggered],
                "message": f"Triggered {len(triggered)} alerts",
            }

        return error_response(400, "Invalid action")

    except Exception as e:
        log.error(f"Error processing alert request: {str(e)}")
        return error_response(500, "Failed to process request")


@router.put("")
async def update_alert_config(
    body: AlertConfigRequest,
    type: Optional[str] = Query(None, description="rule or channel"),
    monitoring: MonitoringSystem = Depends(get_monitoring_system),
):
    """Update an alert rule (type=rule) or a notification channel (type=channel)"""
    try:
        alerting = monitoring.alerting_system

        if type == "rule":
            if not body.ruleId or not body.updates:
                return error_response(400, "Rule ID and updates are required")
            if body.ruleId not in [rule.id for rule in alerting.get_rules()]:
                return error_response(404, "Alert rule not found")
            if not alerting.update_alert_rule(body.ruleId, body.updates):
                return error_response(400, "Invalid alert rule updates")
            return {"success": True, "message": "Alert rule updated successfully"}

        if type == "channel":
            if not body.channelType or not body.updates:
                return error_response(400, "Channel type and updates are required")
            if body.channelType not in [channel.type for channel in alerting.get_channels()]:
                return error_response(404, "Notification channel not found")
            if not alerting.update_channel(body.channelType, body.updates):
                return error_response(400, "Invalid notification channel updates")
            return {"success": True, "message": "Notification channel updated successfully"}

        return error_response(400, "Invalid type parameter")

    except Exception as e:
        log.error(f"Error updating alert configuration: {str(e)}")
        return error_response(500, "Failed to update configuration")


@router.get("/rules")
async def get_alert_rules(monitoring: MonitoringSystem = Depends(get_monitoring_system)):
    """Current alert rules"""
    rules = monitoring.alerting_system.get_rules()
    return {"success": True, "data": [rule.to_dict() for rule in rules], "count": len(rules)}


@router.get("/channels")
async def get_alert_channels(monitoring: MonitoringSystem = Depends(get_monitoring_system)):
    """Notification channels, secrets redacted"""
    channels = monitoring.alerting_system.get_channels()
    return {"success": True, "data": [channel.to_dict() for channel in channels], "count": len(channels)}
