"""
Shared fixtures for the monitoring test suite.

Logging to files and every outbound notification channel are switched off
before the package is imported, so no test touches the network or disk.
"""
import os

os.environ.setdefault("LOG_TO_FILE", "false")
for _name in ("SMTP_HOST", "SLACK_WEBHOOK_URL", "ALERT_WEBHOOK_URL", "MONITORING_ENDPOINT", "MONITORING_API_KEY"):
    os.environ[_name] = ""

from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSender:
    """Stands in for NotificationSender; remembers every delivery"""

    def __init__(self, failing_channels=()):
        self.failing_channels = set(failing_channels)
        self.sent = []

    async def send(self, channel, alert):
        if channel.type in self.failing_channels:
            raise ConnectionError(f"{channel.type} unreachable")
        self.sent.append((channel.type, alert))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def monitoring(clock, sender, monkeypatch):
    """Initialized MonitoringSystem with a quiet alerting system and no scheduler"""
    import sys
    import threading

    from flipbook_monitoring.config import Settings
    from flipbook_monitoring.models.alerts import AlertChannel
    from flipbook_monitoring.services.alerting_system import AlertingSystem
    from flipbook_monitoring.services.monitoring_system import MonitoringSystem

    monkeypatch.setattr(sys, "excepthook", lambda *args: None)
    monkeypatch.setattr(threading, "excepthook", lambda args: None)

    alerting = AlertingSystem(
        channels=[
            AlertChannel(type="console", enabled=True),
            AlertChannel(type="slack", enabled=False),
        ],
        sender=sender,
        clock=clock,
    )
    system = MonitoringSystem(
        settings=Settings(_env_file=None, log_to_file=False, monitoring_endpoint="", monitoring_api_key=""),
        alerting_system=alerting,
        clock=clock,
    )
    system.initialize()
    yield system
    system.shutdown()


@pytest.fixture
def client(monitoring):
    """TestClient bound to the app without running its lifespan"""
    from fastapi.testclient import TestClient

    from flipbook_monitoring.api.deps import get_monitoring_system
    from flipbook_monitoring.main import app

    app.dependency_overrides[get_monitoring_system] = lambda: monitoring
    app.state.monitoring = monitoring
    app.state.scheduler = None
    yield TestClient(app)
    app.dependency_overrides.pop(get_monitoring_system, None)
    del app.state.monitoring
    del app.state.scheduler
