"""Framework-agnostic async circuit breaker.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - ``next_attempt_at`` is set only while ``OPEN``; entering ``CLOSED`` always
    zeroes the failure count.
  - Half-open probing is intentionally conservative: the caller that moves a
    due breaker from ``OPEN`` to ``HALF_OPEN`` runs the only probe, and every
    other caller is rejected until that probe settles.
  - If an uncounted exception (or a cancellation) ends a probe, the breaker
    returns to ``OPEN`` with its previous retry time, so a later call may
    attempt a fresh probe.
  - Timed-out calls are counted as failures and cancelled best-effort; the
    underlying operation may keep running unobserved.
"""

from pep_screening.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from pep_screening.circuit_breaker.exceptions import (
    CallTimeoutError,
    CircuitBreakerError,
    CircuitOpenError,
)
from pep_screening.circuit_breaker.metrics import (
    BreakerListener,
    LoggingBreakerListener,
)
from pep_screening.circuit_breaker.state import (
    BreakerMetrics,
    BreakerSnapshot,
    CircuitState,
)
from pep_screening.circuit_breaker.storage import (
    AbstractBreakerStorage,
    InMemoryBreakerStorage,
)

__all__ = [
    "AbstractBreakerStorage",
    "BreakerListener",
    "BreakerMetrics",
    "BreakerSnapshot",
    "CallTimeoutError",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "InMemoryBreakerStorage",
    "LoggingBreakerListener",
]
