from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

import pep_screening.circuit_breaker.storage as storage_mod
from pep_screening.circuit_breaker import CircuitState, InMemoryBreakerStorage

pytestmark = pytest.mark.asyncio

_NOW = datetime(2020, 1, 1, tzinfo=UTC)


class _ExplodingAsyncLock:
    async def acquire(self) -> None:
        raise RuntimeError("async acquire failed")

    def release(self) -> None:
        return


@pytest.fixture(autouse=True)
def _frozen_clock(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(storage_mod, "_utcnow", lambda: _NOW)


async def _open(storage: InMemoryBreakerStorage, recovery_timeout: float = 0.0):
    return await storage.record_failure(
        "svc", probe=False, failure_threshold=1, recovery_timeout=recovery_timeout
    )


async def test_get_state_creates_closed_default() -> None:
    storage = InMemoryBreakerStorage()

    snapshot = await storage.get_state("svc")

    assert snapshot.name == "svc"
    assert snapshot.state == CircuitState.CLOSED
    assert snapshot.failure_count == 0
    assert snapshot.success_count == 0
    assert snapshot.last_failure_at is None
    assert snapshot.next_attempt_at is None


async def test_record_failure_opens_at_threshold() -> None:
    storage = InMemoryBreakerStorage()

    previous, snapshot = await _open(storage, recovery_timeout=60.0)

    assert previous == CircuitState.CLOSED
    assert snapshot.state == CircuitState.OPEN
    assert snapshot.last_failure_at == _NOW
    assert snapshot.next_attempt_at == _NOW + timedelta(seconds=60)


async def test_late_failure_while_open_only_updates_counters() -> None:
    storage = InMemoryBreakerStorage()
    _, opened = await _open(storage, recovery_timeout=60.0)

    previous, snapshot = await storage.record_failure(
        "svc", probe=False, failure_threshold=1, recovery_timeout=5.0
    )

    assert previous == CircuitState.OPEN
    assert snapshot.state == CircuitState.OPEN
    assert snapshot.failure_count == 2
    assert snapshot.next_attempt_at == opened.next_attempt_at


async def test_try_begin_probe_claims_due_breaker_once() -> None:
    storage = InMemoryBreakerStorage()
    await _open(storage)

    first_claimed, first = await storage.try_begin_probe("svc")
    second_claimed, second = await storage.try_begin_probe("svc")

    assert first_claimed is True
    assert first.state == CircuitState.HALF_OPEN
    assert first.next_attempt_at is None
    assert second_claimed is False
    assert second.state == CircuitState.HALF_OPEN


async def test_try_begin_probe_refuses_before_recovery_window() -> None:
    storage = InMemoryBreakerStorage()
    await _open(storage, recovery_timeout=30.0)

    claimed, snapshot = await storage.try_begin_probe("svc")

    assert claimed is False
    assert snapshot.state == CircuitState.OPEN
    assert (await storage.get_state("svc")).state == CircuitState.OPEN


async def test_try_begin_probe_reports_closed_breaker_without_claiming() -> None:
    storage = InMemoryBreakerStorage()

    claimed, snapshot = await storage.try_begin_probe("svc")

    assert claimed is False
    assert snapshot.state == CircuitState.CLOSED


async def test_probe_success_closes_and_zeroes_failures() -> None:
    storage = InMemoryBreakerStorage()
    await _open(storage)
    await storage.try_begin_probe("svc")

    previous, snapshot = await storage.record_success("svc", probe=True)

    assert previous == CircuitState.HALF_OPEN
    assert snapshot.state == CircuitState.CLOSED
    assert snapshot.failure_count == 0
    assert snapshot.success_count == 1
    assert snapshot.next_attempt_at is None


async def test_non_probe_success_does_not_close_open_breaker() -> None:
    storage = InMemoryBreakerStorage()
    await _open(storage, recovery_timeout=30.0)

    previous, snapshot = await storage.record_success("svc", probe=False)

    assert previous == CircuitState.OPEN
    assert snapshot.state == CircuitState.OPEN
    assert snapshot.success_count == 1


async def test_abandon_probe_restores_previous_retry_time() -> None:
    storage = InMemoryBreakerStorage()
    _, opened = await _open(storage)
    await storage.try_begin_probe("svc")

    previous, snapshot = await storage.abandon_probe("svc", opened.next_attempt_at)

    assert previous == CircuitState.HALF_OPEN
    assert snapshot.state == CircuitState.OPEN
    assert snapshot.next_attempt_at == opened.next_attempt_at
    assert snapshot.failure_count == 1


async def test_abandon_probe_ignores_settled_breaker() -> None:
    storage = InMemoryBreakerStorage()

    previous, snapshot = await storage.abandon_probe("svc", None)

    assert previous == CircuitState.CLOSED
    assert snapshot.state == CircuitState.CLOSED


async def test_force_open_and_reset() -> None:
    storage = InMemoryBreakerStorage()

    _, opened = await storage.force_open("svc", 12.0)
    assert opened.state == CircuitState.OPEN
    assert opened.next_attempt_at == _NOW + timedelta(seconds=12)

    previous, reset = await storage.reset("svc")
    assert previous == CircuitState.OPEN
    assert reset == await storage.get_state("svc")
    assert reset.state == CircuitState.CLOSED
    assert reset.next_attempt_at is None


async def test_storage_uses_thread_lock_path_when_gil_disabled(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        "pep_screening.circuit_breaker.storage.sys._is_gil_enabled",
        lambda: False,
        raising=False,
    )
    storage = InMemoryBreakerStorage()

    snapshot = await storage.get_state("svc")

    assert snapshot.name == "svc"


async def test_storage_releases_thread_lock_if_async_lock_acquire_fails(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        "pep_screening.circuit_breaker.storage.sys._is_gil_enabled",
        lambda: False,
        raising=False,
    )
    storage = InMemoryBreakerStorage()

    thread_lock = storage._thread_locks["svc"]
    storage._async_locks["svc"] = _ExplodingAsyncLock()  # type: ignore[assignment]

    with pytest.raises(RuntimeError, match="async acquire failed"):
        async with storage._locked("svc"):
            pass

    assert thread_lock.locked() is False
