"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open.
  - A call that was attempted but exceeded the per-call timeout.
"""

from datetime import datetime


class CircuitBreakerError(Exception):
    """Base exception for the circuit breaker package."""


class CircuitOpenError(CircuitBreakerError):
    """Raised when a call is rejected because the circuit is open.

    Attributes:
        breaker_name: Name of the breaker rejecting the call.
        next_attempt_at: When a probe may be attempted, or ``None`` while
            another caller's probe is in flight.
        retry_after: Seconds until a half-open probe may be attempted.
    """

    def __init__(
        self,
        breaker_name: str,
        next_attempt_at: datetime | None,
        retry_after: float,
    ) -> None:
        """Initialize a circuit-open exception payload.

        Args:
            breaker_name: Breaker rejecting the call.
            next_attempt_at: Earliest probe time, if known.
            retry_after: Seconds until the next probe window opens.
        """
        self.breaker_name = breaker_name
        self.next_attempt_at = next_attempt_at
        self.retry_after = retry_after
        when = "probe_in_flight"
        if next_attempt_at is not None:
            when = next_attempt_at.isoformat()
        super().__init__(
            f"circuit_open: {breaker_name} next_attempt_at={when} "
            f"retry_after={retry_after:g}s"
        )


class CallTimeoutError(CircuitBreakerError, TimeoutError):
    """Raised when a protected call exceeds the breaker's per-call timeout."""

    def __init__(self, breaker_name: str, timeout_seconds: float) -> None:
        self.breaker_name = breaker_name
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"call_timeout: {breaker_name} timeout_seconds={timeout_seconds:g}"
        )
