"""
Alerting System
Evaluates metric snapshots against threshold rules, throttles repeats,
escalates alerts left unresolved and dispatches notifications.
"""
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from flipbook_monitoring.config import Settings
from flipbook_monitoring.models.alerts import (
    DEFAULT_ALERT_RULES,
    Alert,
    AlertChannel,
    AlertRule,
    AlertSeverity,
    AlertStats,
    Comparison,
)
from flipbook_monitoring.services.notification_channels import NotificationSender, build_default_channels
from flipbook_monitoring.utils.helpers import epoch_ms, utc_now
from flipbook_monitoring.utils.logger import log

RESOLUTION_NOTIFY_SEVERITIES = (AlertSeverity.HIGH, AlertSeverity.CRITICAL)


class AlertingSystem:
    """
    Per rule state machine: quiescent -> triggered -> (escalated) -> resolved.

    Alerts are matched to their rule by ``rule_id``. All reads and writes of
    the rule, channel and alert lists happen under one lock; notifications
    are sent after the lock is released.
    """

    def __init__(
        self,
        rules: Optional[List[AlertRule]] = None,
        channels: Optional[List[AlertChannel]] = None,
        sender: Optional[NotificationSender] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._rules: List[AlertRule] = list(rules if rules is not None else DEFAULT_ALERT_RULES)
        self._channels: List[AlertChannel] = list(
            channels if channels is not None else build_default_channels(settings)
        )
        self.sender = sender or NotificationSender()
        self._clock = clock
        self._alerts: List[Alert] = []
        self._lock = threading.RLock()

    async def check_and_trigger_alerts(self, metrics: Dict[str, float]) -> List[Alert]:
        """
        Evaluate every enabled rule against ``metrics``.

        Breached rules open a new alert unless throttled; recovered rules
        resolve their open alerts. Escalations are checked on every pass.
        Returns the alerts opened by this pass.
        """
        now = self._clock()
        triggered: List[Alert] = []
        resolved: List[Alert] = []

        with self._lock:
            for rule in self._rules:
                if not rule.enabled:
                    continue

                current_value = metrics.get(rule.metric)
                if current_value is None:
                    continue

                if rule.comparison.breached(current_value, rule.threshold):
                    alert = self._open_alert(rule, current_value, now)
                    if alert:
                        triggered.append(alert)
                else:
                    resolved.extend(self._resolve_alerts_for_rule(rule, now))

            escalated = self._collect_escalations(now)

        for alert in triggered:
            await self._send_notifications(alert)
            log.bind(
                alertId=alert.id,
                rule=alert.rule_id,
                severity=alert.severity.value,
                currentValue=alert.current_value,
                threshold=alert.threshold,
            ).warning("Alert triggered")

        for alert in resolved:
            if alert.severity in RESOLUTION_NOTIFY_SEVERITIES and not alert.derived:
                await self._send_resolution_notification(alert)

        for original, escalation in escalated:
            await self._send_notifications(escalation)
            log.bind(
                originalAlertId=original.id,
                escalatedAlertId=escalation.id,
                duration=(now - original.timestamp).total_seconds() * 1000,
            ).error("Alert escalated")

        return triggered

    def _open_alert(self, rule: AlertRule, current_value: float, now: datetime) -> Optional[Alert]:
        """Throttle check and insert; caller holds the lock"""
        open_alerts = [
            a for a in self._alerts
            if a.rule_id == rule.id and not a.resolved and not a.derived
        ]
        if open_alerts:
            latest = max(open_alerts, key=lambda a: a.timestamp)
            since_last = now - latest.timestamp
            if since_last < timedelta(minutes=rule.throttle_minutes):
                log.bind(rule=rule.id, timeSinceLastAlert=since_last.total_seconds() * 1000).debug(
                    "Alert throttled"
                )
                return None

        alert = Alert(
            id=f"{rule.id}_{epoch_ms(now)}",
            rule_id=rule.id,
            timestamp=now,
            severity=rule.severity,
            metric=rule.metric,
            current_value=current_value,
            threshold=rule.threshold,
            comparison=rule.comparison,
            message=(
                f"{rule.name}: {rule.description}. "
                f"Current value: {_fmt(current_value)}, Threshold: {_fmt(rule.threshold)}"
            ),
        )
        self._alerts.append(alert)
        return alert

    def _resolve_alerts_for_rule(self, rule: AlertRule, now: datetime) -> List[Alert]:
        resolved = []
        for alert in self._alerts:
            if alert.rule_id != rule.id or alert.resolved:
                continue
            alert.resolved = True
            alert.resolved_at = now
            resolved.append(alert)
            log.bind(
                alertId=alert.id,
                rule=rule.id,
                duration=(now - alert.timestamp).total_seconds() * 1000,
            ).info("Alert resolved")
        return resolved

    def _collect_escalations(self, now: datetime) -> List[tuple]:
        escalations = []
        rules = {rule.id: rule for rule in self._rules}

        for alert in list(self._alerts):
            if alert.resolved or alert.escalated or alert.derived:
                continue

            rule = rules.get(alert.rule_id)
            if not rule or not rule.escalation_minutes:
                continue

            age = now - alert.timestamp
            if age < timedelta(minutes=rule.escalation_minutes):
                continue

            alert.escalated = True
            alert.escalated_at = now

            escalation = alert.copy_as(
                id=f"{alert.id}_escalated",
                timestamp=now,
                severity=AlertSeverity.CRITICAL if alert.severity == AlertSeverity.CRITICAL else AlertSeverity.HIGH,
                message=(
                    f"ESCALATED: {alert.message} "
                    f"(Unresolved for {round(age.total_seconds() / 60)} minutes)"
                ),
                escalated=False,
                escalated_at=None,
                notifications_sent=[],
                derived=True,
            )
            self._alerts.append(escalation)
            escalations.append((alert, escalation))

        return escalations

    async def _send_notifications(self, alert: Alert) -> None:
        with self._lock:
            channels = [c for c in self._channels if c.accepts(alert.severity)]

        for channel in channels:
            try:
                await self.sender.send(channel, alert)
            except Exception as e:
                log.bind(channel=channel.type, alertId=alert.id, error=str(e)).error(
                    "Failed to send notification"
                )
                continue

            with self._lock:
                alert.notifications_sent.append(channel.type)

    async def _send_resolution_notification(self, alert: Alert) -> None:
        resolution = alert.copy_as(
            id=f"{alert.id}_resolved",
            timestamp=self._clock(),
            message=f"RESOLVED: {alert.message}",
            notifications_sent=[],
        )
        await self._send_notifications(resolution)

    def get_alerts(
        self,
        resolved: Optional[bool] = None,
        severity: Optional[str] = None,
        metric: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Alert]:
        """Alerts matching the filters, newest first"""
        with self._lock:
            alerts = list(self._alerts)

        if resolved is not None:
            alerts = [a for a in alerts if a.resolved == resolved]
        if severity:
            alerts = [a for a in alerts if a.severity.value == str(severity)]
        if metric:
            alerts = [a for a in alerts if a.metric == metric]

        alerts.sort(key=lambda a: a.timestamp, reverse=True)

        if limit:
            alerts = alerts[:limit]
        return alerts

    def get_alert_stats(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> AlertStats:
        with self._lock:
            alerts = list(self._alerts)

        if start is not None and end is not None:
            alerts = [a for a in alerts if start <= a.timestamp <= end]

        by_severity: Dict[str, int] = {}
        by_metric: Dict[str, int] = {}
        for alert in alerts:
            by_severity[alert.severity.value] = by_severity.get(alert.severity.value, 0) + 1
            by_metric[alert.metric] = by_metric.get(alert.metric, 0) + 1

        return AlertStats(
            total=len(alerts),
            resolved=len([a for a in alerts if a.resolved]),
            unresolved=len([a for a in alerts if not a.resolved]),
            escalated=len([a for a in alerts if a.escalated]),
            by_severity=by_severity,
            by_metric=by_metric,
        )

    def get_rules(self) -> List[AlertRule]:
        with self._lock:
            return list(self._rules)

    def get_channels(self) -> List[AlertChannel]:
        with self._lock:
            return list(self._channels)

    def update_alert_rule(self, rule_id: str, updates: Dict) -> bool:
        """False for an unknown rule or updates that don't fit the rule's fields"""
        with self._lock:
            for index, rule in enumerate(self._rules):
                if rule.id == rule_id:
                    try:
                        self._rules[index] = rule.updated(updates)
                    except (ValueError, TypeError) as e:
                        log.bind(ruleId=rule_id, updates=updates).warning(f"Rejected alert rule update: {str(e)}")
                        return False
                    log.bind(ruleId=rule_id, updates=updates).info("Alert rule updated")
                    return True
        return False

    def update_channel(self, channel_type: str, updates: Dict) -> bool:
        with self._lock:
            for index, channel in enumerate(self._channels):
                if channel.type == channel_type:
                    try:
                        self._channels[index] = channel.updated(updates)
                    except (ValueError, TypeError) as e:
                        log.bind(channelType=channel_type).warning(f"Rejected alert channel update: {str(e)}")
                        return False
                    log.bind(channelType=channel_type, updates=_redact(updates)).info("Alert channel updated")
                    return True
        return False

    async def test_notifications(self) -> Dict[str, bool]:
        """Send a low severity test alert through every channel"""
        test_alert = Alert(
            id="test_alert",
            rule_id="test_alert",
            timestamp=self._clock(),
            severity=AlertSeverity.LOW,
            metric="test_metric",
            current_value=100,
            threshold=50,
            comparison=Comparison.GREATER_THAN,
            message="This is a test alert to verify notification channels are working correctly.",
        )

        results: Dict[str, bool] = {}
        for channel in self.get_channels():
            if not channel.enabled:
                results[channel.type] = False
                continue
            try:
                await self.sender.send(channel, test_alert)
                results[channel.type] = True
            except Exception as e:
                results[channel.type] = False
                log.bind(channel=channel.type, error=str(e)).error("Test notification failed")

        return results


def _fmt(value: float) -> str:
    """Render 60.0 as 60 and keep real fractions"""
    number = float(value)
    return str(int(number)) if number.is_integer() else str(number)


def _redact(updates: Dict) -> Dict:
    config = updates.get("config") if isinstance(updates, dict) else None
    if isinstance(config, dict):
        return {**updates, "config": {key: "***" for key in config}}
    return updates
