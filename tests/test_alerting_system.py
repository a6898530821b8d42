"""
AlertingSystem tests.

Guards:
1. Throttling: repeated breaches inside throttleMinutes open one alert
2. Resolution when the metric recovers, matched by rule id
3. Escalation after escalationMinutes, exactly once, without re-escalating
   the escalation record
4. Channel fan-out by severity filter, resolution notices for high/critical
5. Rule and channel updates, test notifications
"""
import asyncio

import pytest

from flipbook_monitoring.models.alerts import (
    AlertChannel,
    AlertRule,
    AlertSeverity,
    ALL_SEVERITIES,
    Comparison,
)
from flipbook_monitoring.services.alerting_system import AlertingSystem


def _run(coro):
    """Run an async coroutine in a sync test."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None
    if loop and loop.is_running():
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)


def _rule(**overrides):
    values = dict(
        id="load_time_rule",
        name="Slow Loads",
        metric="average_load_time",
        threshold=50,
        comparison=Comparison.GREATER_THAN,
        severity=AlertSeverity.HIGH,
        enabled=True,
        throttle_minutes=15,
        escalation_minutes=60,
        description="Loads are slow",
    )
    values.update(overrides)
    return AlertRule(**values)


def _channels():
    return [
        AlertChannel(type="console", enabled=True, severity_filter=list(ALL_SEVERITIES)),
        AlertChannel(type="email", enabled=True, severity_filter=[AlertSeverity.HIGH, AlertSeverity.CRITICAL]),
        AlertChannel(type="slack", enabled=False, severity_filter=list(ALL_SEVERITIES)),
    ]


@pytest.fixture
def alerting(clock, sender):
    return AlertingSystem(rules=[_rule()], channels=_channels(), sender=sender, clock=clock)


class TestThrottling:

    def test_two_breaches_within_throttle_open_one_alert(self, alerting, clock):
        _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))
        clock.advance(minutes=1)
        second = _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))

        alerts = alerting.get_alerts()
        assert len(alerts) == 1
        assert alerts[0].resolved is False
        assert second == []

    def test_breach_after_throttle_opens_another(self, alerting, clock):
        _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))
        clock.advance(minutes=16)
        _run(alerting.check_and_trigger_alerts({"average_load_time": 70}))

        assert len(alerting.get_alerts(resolved=False)) == 2

    def test_message_and_id(self, alerting, clock):
        alert = _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))[0]

        assert alert.id.startswith("load_time_rule_")
        assert alert.rule_id == "load_time_rule"
        assert alert.message == "Slow Loads: Loads are slow. Current value: 60, Threshold: 50"

    def test_disabled_rule_and_missing_metric_are_skipped(self, clock, sender):
        alerting = AlertingSystem(
            rules=[_rule(enabled=False), _rule(id="other", metric="queue_depth")],
            channels=_channels(),
            sender=sender,
            clock=clock,
        )
        assert _run(alerting.check_and_trigger_alerts({"average_load_time": 999})) == []

    def test_less_than_comparison(self, clock, sender):
        alerting = AlertingSystem(
            rules=[_rule(comparison=Comparison.LESS_THAN, threshold=95, metric="success_rate")],
            channels=_channels(),
            sender=sender,
            clock=clock,
        )
        assert len(_run(alerting.check_and_trigger_alerts({"success_rate": 90}))) == 1


class TestResolution:

    def test_recovery_resolves_open_alert(self, alerting, clock):
        _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))
        clock.advance(minutes=2)
        _run(alerting.check_and_trigger_alerts({"average_load_time": 40}))

        alert = alerting.get_alerts()[0]
        assert alert.resolved is True
        assert alert.resolved_at == clock.now

    def test_resolution_matches_rule_id_not_metric(self, clock, sender):
        """A rule whose id differs from its metric still resolves its own alerts."""
        alerting = AlertingSystem(
            rules=[_rule(id="custom_rule", metric="average_load_time")],
            channels=_channels(),
            sender=sender,
            clock=clock,
        )
        _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))
        _run(alerting.check_and_trigger_alerts({"average_load_time": 10}))

        assert alerting.get_alerts(resolved=False) == []

    def test_high_severity_resolution_is_announced(self, alerting, clock, sender):
        _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))
        sender.sent.clear()
        _run(alerting.check_and_trigger_alerts({"average_load_time": 40}))

        messages = [alert.message for _, alert in sender.sent]
        assert messages
        assert all(message.startswith("RESOLVED: ") for message in messages)
        assert sender.sent[0][1].id.endswith("_resolved")

    def test_medium_severity_resolution_is_silent(self, clock, sender):
        alerting = AlertingSystem(
            rules=[_rule(severity=AlertSeverity.MEDIUM)], channels=_channels(), sender=sender, clock=clock
        )
        _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))
        sender.sent.clear()
        _run(alerting.check_and_trigger_alerts({"average_load_time": 40}))

        assert sender.sent == []


class TestEscalation:

    def test_escalates_once_after_window(self, alerting, clock):
        _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))
        clock.advance(minutes=61)
        _run(alerting.check_and_trigger_alerts({"missing_metric": 1}))
        clock.advance(minutes=61)
        _run(alerting.check_and_trigger_alerts({"missing_metric": 1}))

        alerts = alerting.get_alerts()
        escalations = [a for a in alerts if a.id.endswith("_escalated")]
        assert len(escalations) == 1
        assert escalations[0].message.startswith("ESCALATED: ")
        assert escalations[0].message.endswith("(Unresolved for 61 minutes)")
        assert escalations[0].severity == AlertSeverity.HIGH

        original = [a for a in alerts if not a.id.endswith("_escalated")][0]
        assert original.escalated is True
        assert original.escalated_at is not None

    def test_escalation_record_does_not_block_new_alerts(self, alerting, clock):
        _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))
        clock.advance(minutes=61)
        _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))

        fresh = [a for a in alerting.get_alerts() if not a.derived and not a.escalated]
        assert len(fresh) == 1

    def test_recovery_resolves_escalation_too(self, alerting, clock):
        _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))
        clock.advance(minutes=61)
        _run(alerting.check_and_trigger_alerts({}))
        _run(alerting.check_and_trigger_alerts({"average_load_time": 1}))

        assert alerting.get_alerts(resolved=False) == []


class TestNotifications:

    def test_fan_out_respects_filters_and_enabled(self, alerting, sender):
        alert = _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))[0]

        assert [channel for channel, _ in sender.sent] == ["console", "email"]
        assert alert.notifications_sent == ["console", "email"]

    def test_failed_channel_is_not_recorded(self, alerting, sender):
        sender.failing_channels = {"email"}

        alert = _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))[0]

        assert alert.notifications_sent == ["console"]

    def test_test_notifications(self, alerting, sender):
        sender.failing_channels = {"email"}

        results = _run(alerting.test_notifications())

        assert results == {"console": True, "email": False, "slack": False}


class TestConfiguration:

    def test_update_rule(self, alerting):
        assert alerting.update_alert_rule("load_time_rule", {"threshold": 80, "throttleMinutes": 1}) is True

        rule = alerting.get_rules()[0]
        assert rule.threshold == 80
        assert rule.throttle_minutes == 1
        assert rule.id == "load_time_rule"

    def test_update_unknown_rule(self, alerting):
        assert alerting.update_alert_rule("nope", {"threshold": 1}) is False

    def test_update_channel(self, alerting):
        assert alerting.update_channel("slack", {"enabled": True, "severityFilter": ["critical"]}) is True

        slack = [c for c in alerting.get_channels() if c.type == "slack"][0]
        assert slack.enabled is True
        assert slack.severity_filter == [AlertSeverity.CRITICAL]

    def test_update_unknown_channel(self, alerting):
        assert alerting.update_channel("pager", {"enabled": True}) is False

    def test_update_rule_rejects_unknown_severity(self, alerting):
        assert alerting.update_alert_rule("load_time_rule", {"severity": "urgent", "threshold": 1}) is False

        rule = alerting.get_rules()[0]
        assert rule.severity == AlertSeverity.HIGH
        assert rule.threshold == 50

    def test_update_rule_parses_enabled_strings(self, alerting):
        assert alerting.update_alert_rule("load_time_rule", {"enabled": "false"}) is True
        assert alerting.get_rules()[0].enabled is False

        assert alerting.update_alert_rule("load_time_rule", {"enabled": "maybe"}) is False
        assert alerting.get_rules()[0].enabled is False

    def test_update_channel_rejects_unknown_severity_filter(self, alerting):
        assert alerting.update_channel("slack", {"severityFilter": ["critical", "urgent"]}) is False

        slack = [c for c in alerting.get_channels() if c.type == "slack"][0]
        assert slack.severity_filter == list(ALL_SEVERITIES)


def test_stats(alerting, clock):
    _run(alerting.check_and_trigger_alerts({"average_load_time": 60}))
    clock.advance(minutes=1)
    _run(alerting.check_and_trigger_alerts({"average_load_time": 10}))

    stats = alerting.get_alert_stats()

    assert stats.total == 1
    assert stats.resolved == 1
    assert stats.by_severity == {"high": 1}
    assert stats.by_metric == {"average_load_time": 1}
