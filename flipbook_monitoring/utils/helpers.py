"""
Small numeric and time helpers shared by the monitoring services
"""
from datetime import datetime, timezone
from typing import Iterable, Optional


def utc_now() -> datetime:
    """Timezone-aware current time in UTC"""
    return datetime.now(timezone.utc)


def epoch_ms(moment: datetime) -> int:
    """Milliseconds since the epoch, used to build record ids"""
    return int(moment.timestamp() * 1000)


def iso(moment: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string with a trailing Z for UTC datetimes"""
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_datetime(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp coming from a query string or JSON body.

    Naive values are treated as UTC. Raises ValueError on bad input.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("empty timestamp")
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers, returning default if denominator is zero"""
    if denominator == 0:
        return default
    return numerator / denominator


def average(values: Iterable[float]) -> float:
    """Arithmetic mean, 0 for an empty input"""
    values = list(values)
    return safe_divide(sum(values), len(values))
