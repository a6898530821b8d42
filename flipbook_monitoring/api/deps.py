"""
Shared route dependencies
"""
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from flipbook_monitoring.services.monitoring_system import MonitoringSystem


def get_monitoring_system(request: Request) -> MonitoringSystem:
    """The MonitoringSystem built by the application lifespan"""
    return request.app.state.monitoring


def error_response(status_code: int, message: str, details: Optional[Any] = None) -> JSONResponse:
    content = {"success": False, "error": message}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)
