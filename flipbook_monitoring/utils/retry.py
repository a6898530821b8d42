"""
Retry policy for alert notification delivery.

Email, Slack and webhook channels talk to services outside our control; a
RetryPolicy rides out transient failures with exponential backoff and keeps
a per-delivery record of what happened.
"""
import asyncio
import inspect
import random
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Type
from flipbook_monitoring.utils.logger import log

RETRYABLE_STATUS_CODES = (408, 425, 429)
TRANSIENT_HINTS = ("rate limit", "too many requests", "timeout", "timed out", "connection reset", "connection refused")


class DeliveryError(Exception):
    """A remote endpoint answered, but rejected the notification."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass
class DeliveryAttempts:
    """What happened while delivering one notification."""
    attempts: int = 0
    waited_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)
    delivered: bool = False

    @property
    def last_error(self) -> Optional[str]:
        return self.errors[-1] if self.errors else None

    def failed(self, error: Exception, wait: float = 0.0) -> None:
        self.attempts += 1
        self.waited_seconds += wait
        self.errors.append(f"{type(error).__name__}: {error}")

    def succeeded(self) -> None:
        self.attempts += 1
        self.delivered = True

    def to_dict(self) -> dict:
        return {
            "attempts": self.attempts,
            "waited_seconds": round(self.waited_seconds, 2),
            "delivered": self.delivered,
            "last_error": self.last_error,
            "errors": self.errors[:5],
        }


def backoff_delay(attempt: int, base_delay: float, max_delay: float, jitter: bool = True) -> float:
    """
    Seconds to wait after failed attempt number ``attempt`` (1-indexed).

    Doubles from ``base_delay``, capped at ``max_delay``, plus up to 25%
    random jitter so channels failing together don't retry in lockstep.
    """
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    if jitter:
        delay += delay * random.uniform(0, 0.25)
    return delay


def is_transient_failure(error: Exception, transient_types: Tuple[Type[Exception], ...] = ()) -> bool:
    """True when trying the same delivery again could succeed"""
    if isinstance(error, DeliveryError) and error.status is not None:
        return error.status >= 500 or error.status in RETRYABLE_STATUS_CODES

    if isinstance(error, transient_types):
        return True

    text = str(error).lower()
    return any(hint in text for hint in TRANSIENT_HINTS)


class RetryPolicy:
    """
    Runs one delivery with up to ``max_attempts`` tries.

    Usage:
        policy = RetryPolicy(max_attempts=3, transient_types=(ConnectionError,))
        await policy.run(post_payload, url, payload)
        policy.record.to_dict()
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        max_delay: float = 30.0,
        transient_types: Tuple[Type[Exception], ...] = (ConnectionError, TimeoutError, asyncio.TimeoutError),
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.transient_types = transient_types
        self.record = DeliveryAttempts()

    async def run(self, func: Callable, *args, **kwargs):
        """Call ``func`` (sync or async) until it succeeds or the failure is permanent"""
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = func(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                if attempt >= self.max_attempts or not is_transient_failure(e, self.transient_types):
                    self.record.failed(e)
                    raise

                wait = backoff_delay(attempt, self.base_delay, self.max_delay)
                self.record.failed(e, wait)
                log.warning(f"Delivery attempt {attempt} failed: {e}. Retrying in {wait:.1f}s...")
                await asyncio.sleep(wait)
            else:
                self.record.succeeded()
                return result
