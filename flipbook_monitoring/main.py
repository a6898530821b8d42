"""
FlipBook Rendering Monitoring Service
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from flipbook_monitoring.config import get_settings
from flipbook_monitoring.utils.logger import log
from flipbook_monitoring import __version__

# Import routers
from flipbook_monitoring.api import health, alerts, performance, rendering
from flipbook_monitoring.scheduler import MonitoringScheduler
from flipbook_monitoring.services.monitoring_system import MonitoringSystem

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    scheduler = MonitoringScheduler()
    monitoring = MonitoringSystem(settings=settings, scheduler=scheduler)
    monitoring.initialize()

    try:
        scheduler.start()
    except Exception as e:
        log.error(f"Scheduler startup error: {str(e)}")

    app.state.scheduler = scheduler
    app.state.monitoring = monitoring

    yield

    # Shutdown
    monitoring.shutdown()
    scheduler.stop()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Rendering reliability monitoring for the FlipBook document viewer

    - Rendering metrics and per-session viewing analytics
    - Diagnostic reports for failed renders
    - Operational performance metrics (loads, conversions, errors)
    - Threshold alerts with throttling, escalation and notifications
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(alerts.router)
app.include_router(performance.router)
app.include_router(rendering.router)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "app": settings.app_name,
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "status": "/status",
        "endpoints": {
            "alerts": "GET|POST|PUT /api/monitoring/alerts",
            "performance": "GET|POST|DELETE /api/monitoring/performance",
            "rendering": "POST /api/monitoring/rendering/{start,success,error,page,interaction}",
            "rendering_summary": "GET /api/monitoring/rendering/summary",
            "rendering_export": "GET /api/monitoring/rendering/export?format=json|csv"
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "flipbook_monitoring.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
