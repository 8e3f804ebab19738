"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


def isoformat_or_none(value: datetime | None) -> str | None:
    """Return ``value`` as ISO-8601 text, passing ``None`` through."""
    return None if value is None else value.isoformat()


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        failure_count: Counted failures since the breaker last closed.
        success_count: Successful calls since the last reset.
        last_failure_at: Timestamp of the last counted failure, if any.
        next_attempt_at: Earliest time a probe may run. Set only while
            ``OPEN``.
    """

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_at: datetime | None
    next_attempt_at: datetime | None


@dataclass(frozen=True)
class BreakerMetrics:
    """Breaker counters combined with the configuration they are judged by."""

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    failure_threshold: int
    recovery_timeout: float
    call_timeout: float | None
    last_failure_at: datetime | None
    next_attempt_at: datetime | None

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-friendly mapping of the metrics."""
        return {
            "name": self.name,
            "state": str(self.state),
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
            "call_timeout": self.call_timeout,
            "last_failure_at": isoformat_or_none(self.last_failure_at),
            "next_attempt_at": isoformat_or_none(self.next_attempt_at),
        }
