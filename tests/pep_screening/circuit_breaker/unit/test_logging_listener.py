from __future__ import annotations

from datetime import UTC, datetime

import pytest

from pep_screening.circuit_breaker import (
    BreakerSnapshot,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
    LoggingBreakerListener,
)
from tests.pep_screening.support.fakes import FakeLogger

pytestmark = pytest.mark.asyncio

_FAILED_AT = datetime(2020, 1, 1, tzinfo=UTC)


def _snapshot(**overrides: object) -> BreakerSnapshot:
    values: dict[str, object] = {
        "name": "svc",
        "state": CircuitState.CLOSED,
        "failure_count": 1,
        "success_count": 0,
        "last_failure_at": _FAILED_AT,
        "next_attempt_at": None,
    }
    values.update(overrides)
    return BreakerSnapshot(**values)  # type: ignore[arg-type]


async def test_failure_below_threshold_logs_medium_warning(
    fake_logger: FakeLogger,
) -> None:
    listener = LoggingBreakerListener(failure_threshold=3, logger=fake_logger)

    await listener.on_call_failed("svc", RuntimeError("down"), 0.25, _snapshot())

    [(level, fields)] = fake_logger.find("circuit_breaker.failure")
    assert level == "warning"
    assert fields["severity"] == "medium"
    assert fields["error_class"] == "RuntimeError"
    assert fields["error_message"] == "down"
    assert fields["elapsed_ms"] == 250.0
    assert fields["last_failure_at"] == _FAILED_AT.isoformat()


async def test_failure_at_threshold_logs_high_error(fake_logger: FakeLogger) -> None:
    listener = LoggingBreakerListener(failure_threshold=2, logger=fake_logger)

    await listener.on_call_failed(
        "svc", RuntimeError("down"), 0.0, _snapshot(failure_count=2)
    )

    [(level, fields)] = fake_logger.find("circuit_breaker.failure")
    assert level == "error"
    assert fields["severity"] == "high"


async def test_transition_to_open_logs_error_with_retry_time(
    fake_logger: FakeLogger,
) -> None:
    listener = LoggingBreakerListener(failure_threshold=1, logger=fake_logger)
    retry_at = datetime(2020, 1, 1, 0, 1, tzinfo=UTC)

    await listener.on_state_change(
        "svc",
        CircuitState.CLOSED,
        CircuitState.OPEN,
        _snapshot(state=CircuitState.OPEN, next_attempt_at=retry_at),
    )

    [(level, fields)] = fake_logger.find("circuit_breaker.state_changed")
    assert level == "error"
    assert fields["old_state"] == "closed"
    assert fields["new_state"] == "open"
    assert fields["next_attempt_at"] == retry_at.isoformat()
    assert fields["severity"] == "high"


async def test_recovery_transition_logs_info(fake_logger: FakeLogger) -> None:
    listener = LoggingBreakerListener(failure_threshold=1, logger=fake_logger)

    await listener.on_state_change(
        "svc",
        CircuitState.HALF_OPEN,
        CircuitState.CLOSED,
        _snapshot(failure_count=0),
    )

    [(level, fields)] = fake_logger.find("circuit_breaker.state_changed")
    assert level == "info"
    assert "severity" not in fields


async def test_breaker_with_logging_listener_reports_rejections(
    fake_logger: FakeLogger,
) -> None:
    breaker = CircuitBreaker(
        "svc",
        config=CircuitBreakerConfig(failure_threshold=1, recovery_timeout=60.0),
        listeners=[LoggingBreakerListener(failure_threshold=1, logger=fake_logger)],
    )

    async def _fail() -> None:
        raise ConnectionError("refused")

    with pytest.raises(ConnectionError):
        await breaker.call(_fail)
    with pytest.raises(CircuitOpenError):
        await breaker.call(_fail)

    assert fake_logger.events == [
        "circuit_breaker.failure",
        "circuit_breaker.state_changed",
        "circuit_breaker.call_rejected",
    ]
    [(level, fields)] = fake_logger.find("circuit_breaker.call_rejected")
    assert level == "warning"
    assert fields["state"] == "open"
