"""Observability hooks for circuit breakers."""

from __future__ import annotations

from typing import Protocol

import structlog

from pep_screening.circuit_breaker.state import (
    BreakerSnapshot,
    CircuitState,
    isoformat_or_none,
)
from pep_screening.logging import StructuredLogger, log_error, log_info, log_warning


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Every listener call receives the snapshot taken right after the event
        was recorded, carrying the failure count and timestamps.
    """

    async def on_state_change(
        self,
        name: str,
        old: CircuitState,
        new: CircuitState,
        snapshot: BreakerSnapshot,
    ) -> None:
        """Handle circuit state transitions."""

    async def on_call_rejected(self, name: str, snapshot: BreakerSnapshot) -> None:
        """Handle call rejection while the circuit is open."""

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Handle successful protected call completion."""

    async def on_call_failed(
        self,
        name: str,
        exc: Exception,
        elapsed: float,
        snapshot: BreakerSnapshot,
    ) -> None:
        """Handle failed protected call completion."""


class LoggingBreakerListener:
    """Write breaker events as structured log records.

    Failures are logged with ``severity="medium"`` until the failure count
    reaches ``failure_threshold`` and ``severity="high"`` from then on.
    Transitions into ``OPEN`` are always ``high``.
    """

    def __init__(
        self,
        *,
        failure_threshold: int,
        logger: StructuredLogger | None = None,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._logger: StructuredLogger = (
            structlog.get_logger(__name__) if logger is None else logger
        )

    async def on_state_change(
        self,
        name: str,
        old: CircuitState,
        new: CircuitState,
        snapshot: BreakerSnapshot,
    ) -> None:
        fields: dict[str, object] = {
            "service_name": name,
            "old_state": str(old),
            "new_state": str(new),
            "failure_count": snapshot.failure_count,
            "last_failure_at": isoformat_or_none(snapshot.last_failure_at),
            "next_attempt_at": isoformat_or_none(snapshot.next_attempt_at),
        }
        if new == CircuitState.OPEN:
            log_error(
                self._logger, "circuit_breaker.state_changed", severity="high", **fields
            )
            return
        log_info(self._logger, "circuit_breaker.state_changed", **fields)

    async def on_call_rejected(self, name: str, snapshot: BreakerSnapshot) -> None:
        log_warning(
            self._logger,
            "circuit_breaker.call_rejected",
            service_name=name,
            state=str(snapshot.state),
            next_attempt_at=isoformat_or_none(snapshot.next_attempt_at),
        )

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        return

    async def on_call_failed(
        self,
        name: str,
        exc: Exception,
        elapsed: float,
        snapshot: BreakerSnapshot,
    ) -> None:
        high = snapshot.failure_count >= self._failure_threshold
        fields: dict[str, object] = {
            "service_name": name,
            "error_class": exc.__class__.__name__,
            "error_message": str(exc),
            "failure_count": snapshot.failure_count,
            "elapsed_ms": round(elapsed * 1000, 2),
            "last_failure_at": isoformat_or_none(snapshot.last_failure_at),
            "severity": "high" if high else "medium",
        }
        if high:
            log_error(self._logger, "circuit_breaker.failure", **fields)
            return
        log_warning(self._logger, "circuit_breaker.failure", **fields)
