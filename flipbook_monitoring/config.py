"""
Configuration management for the FlipBook monitoring service
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "FlipBook Rendering Monitoring"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Monitoring facade
    enable_metrics: bool = True
    enable_diagnostics: bool = True
    enable_user_analytics: bool = True
    enable_performance_monitoring: bool = True
    enable_error_capture: bool = True
    metrics_retention_days: int = 30
    metrics_cleanup_interval_hours: int = 24

    # Metrics collector
    memory_sample_interval_seconds: int = 30
    memory_warning_percent: float = 80.0

    # Diagnostic capture
    capture_screenshots: bool = True
    capture_network_logs: bool = True
    capture_console_errors: bool = True
    capture_performance_metrics: bool = True
    capture_browser_state: bool = True
    capture_document_state: bool = True
    max_log_entries: int = 100
    max_screenshot_size: int = 1024 * 1024  # bytes

    # External monitoring endpoint for diagnostic reports
    monitoring_endpoint: Optional[str] = None
    monitoring_api_key: Optional[str] = None

    # Performance monitor
    realtime_window_minutes: int = 5
    assumed_conversion_concurrency: int = 5  # Estimate, not measured

    # Alerts
    alert_email_from: Optional[str] = None
    alert_email_to: Optional[str] = None
    alert_email_subject: str = "FlipBook Performance Alert"
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    slack_webhook_url: Optional[str] = None
    slack_alert_channel: str = "#alerts"
    alert_webhook_url: Optional[str] = None
    alert_webhook_headers: str = ""  # JSON object, e.g. {"X-Token": "abc"}
    alert_source: str = "flipbook-monitoring"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
