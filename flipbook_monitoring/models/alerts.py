"""
Alert rules, notification channels and raised alerts
"""
import copy
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from flipbook_monitoring.utils.helpers import iso


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ALL_SEVERITIES = [AlertSeverity.LOW, AlertSeverity.MEDIUM, AlertSeverity.HIGH, AlertSeverity.CRITICAL]


class Comparison(str, Enum):
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"

    def breached(self, value: float, threshold: float) -> bool:
        if self is Comparison.GREATER_THAN:
            return value > threshold
        return value < threshold


def _camel_to_snake(name: str) -> str:
    return "".join("_" + ch.lower() if ch.isupper() else ch for ch in name)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "on"):
        return True
    if text in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def _coerce_updates(target, updates: Dict[str, Any], converters: Dict[str, Any]) -> Dict[str, Any]:
    """Map camelCase or snake_case update keys onto dataclass fields, dropping unknown keys"""
    known = {f.name for f in fields(target)}
    result = {}
    for key, value in (updates or {}).items():
        name = _camel_to_snake(key)
        if name not in known or name in ("id", "type"):
            continue
        if name in converters and value is not None:
            value = converters[name](value)
        result[name] = value
    return result


@dataclass
class AlertRule:
    id: str
    name: str
    metric: str
    threshold: float
    comparison: Comparison
    severity: AlertSeverity
    enabled: bool
    throttle_minutes: float
    description: str
    escalation_minutes: Optional[float] = None

    def updated(self, updates: Dict[str, Any]) -> "AlertRule":
        changes = _coerce_updates(self, updates, {
            "comparison": Comparison,
            "severity": AlertSeverity,
            "threshold": float,
            "throttle_minutes": float,
            "escalation_minutes": float,
            "enabled": _to_bool,
        })
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "metric": self.metric,
            "threshold": self.threshold,
            "comparison": self.comparison.value,
            "severity": self.severity.value,
            "enabled": self.enabled,
            "throttleMinutes": self.throttle_minutes,
            "escalationMinutes": self.escalation_minutes,
            "description": self.description,
        }


@dataclass
class AlertChannel:
    type: str  # console | email | slack | webhook
    enabled: bool
    config: Dict[str, Any] = field(default_factory=dict)
    severity_filter: List[AlertSeverity] = field(default_factory=lambda: list(ALL_SEVERITIES))

    def accepts(self, severity: AlertSeverity) -> bool:
        return self.enabled and severity in self.severity_filter

    def updated(self, updates: Dict[str, Any]) -> "AlertChannel":
        changes = _coerce_updates(self, updates, {
            "enabled": _to_bool,
            "config": dict,
            "severity_filter": lambda values: [AlertSeverity(v) for v in values],
        })
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        # Credentials stay server side
        redacted = {
            key: ("***" if key in ("password", "smtp_password", "webhook_url", "url", "headers") and value else value)
            for key, value in self.config.items()
        }
        return {
            "type": self.type,
            "enabled": self.enabled,
            "config": redacted,
            "severityFilter": [s.value for s in self.severity_filter],
        }


@dataclass
class Alert:
    id: str
    rule_id: str
    timestamp: datetime
    severity: AlertSeverity
    metric: str
    current_value: float
    threshold: float
    comparison: Comparison
    message: str
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    escalated: bool = False
    escalated_at: Optional[datetime] = None
    notifications_sent: List[str] = field(default_factory=list)
    # Derived records (escalations) are never escalated again
    derived: bool = False

    def copy_as(self, **changes) -> "Alert":
        clone = copy.deepcopy(self)
        return replace(clone, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "ruleId": self.rule_id,
            "timestamp": iso(self.timestamp),
            "severity": self.severity.value,
            "metric": self.metric,
            "currentValue": self.current_value,
            "threshold": self.threshold,
            "comparison": self.comparison.value,
            "message": self.message,
            "resolved": self.resolved,
            "escalated": self.escalated,
            "notificationsSent": list(self.notifications_sent),
        }
        if self.resolved_at is not None:
            data["resolvedAt"] = iso(self.resolved_at)
        if self.escalated_at is not None:
            data["escalatedAt"] = iso(self.escalated_at)
        return data


@dataclass
class AlertStats:
    total: int
    resolved: int
    unresolved: int
    escalated: int
    by_severity: Dict[str, int]
    by_metric: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "resolved": self.resolved,
            "unresolved": self.unresolved,
            "escalated": self.escalated,
            "bySeverity": dict(self.by_severity),
            "byMetric": dict(self.by_metric),
        }


DEFAULT_ALERT_RULES = [
    AlertRule(
        id="conversion_failure_rate",
        name="High Conversion Failure Rate",
        metric="conversion_failure_rate",
        threshold=5,  # %
        comparison=Comparison.GREATER_THAN,
        severity=AlertSeverity.HIGH,
        enabled=True,
        throttle_minutes=15,
        escalation_minutes=60,
        description="Document conversion failure rate exceeds acceptable threshold",
    ),
    AlertRule(
        id="average_load_time",
        name="Slow Document Loading",
        metric="average_load_time",
        threshold=5000,  # ms
        comparison=Comparison.GREATER_THAN,
        severity=AlertSeverity.MEDIUM,
        enabled=True,
        throttle_minutes=10,
        escalation_minutes=30,
        description="Average document load time is too slow",
    ),
    AlertRule(
        id="queue_depth",
        name="High Queue Depth",
        metric="queue_depth",
        threshold=50,
        comparison=Comparison.GREATER_THAN,
        severity=AlertSeverity.HIGH,
        enabled=True,
        throttle_minutes=5,
        escalation_minutes=20,
        description="Conversion queue depth is too high",
    ),
    AlertRule(
        id="critical_queue_depth",
        name="Critical Queue Depth",
        metric="queue_depth",
        threshold=100,
        comparison=Comparison.GREATER_THAN,
        severity=AlertSeverity.CRITICAL,
        enabled=True,
        throttle_minutes=2,
        escalation_minutes=10,
        description="Conversion queue depth is critically high",
    ),
    AlertRule(
        id="error_rate_spike",
        name="Error Rate Spike",
        metric="current_error_rate",
        threshold=10,  # %
        comparison=Comparison.GREATER_THAN,
        severity=AlertSeverity.CRITICAL,
        enabled=True,
        throttle_minutes=5,
        escalation_minutes=15,
        description="Overall error rate has spiked significantly",
    ),
]
