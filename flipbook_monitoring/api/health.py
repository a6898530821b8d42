"""
Health check and status endpoints
"""
from fastapi import APIRouter, Request
from flipbook_monitoring.config import get_settings
from flipbook_monitoring.utils.helpers import iso, utc_now
from flipbook_monitoring import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": iso(utc_now()),
        "version": __version__
    }


@router.get("/status")
async def get_status(request: Request):
    """Get system status"""
    monitoring = getattr(request.app.state, "monitoring", None)
    scheduler = getattr(request.app.state, "scheduler", None)

    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "features": {
            "metrics": settings.enable_metrics,
            "diagnostics": settings.enable_diagnostics,
            "user_analytics": settings.enable_user_analytics,
            "performance_monitoring": settings.enable_performance_monitoring,
            "error_capture": settings.enable_error_capture
        },
        "monitoring_initialized": bool(monitoring and monitoring.initialized),
        "scheduled_jobs": scheduler.get_scheduled_jobs() if scheduler else [],
        "timestamp": iso(utc_now())
    }
