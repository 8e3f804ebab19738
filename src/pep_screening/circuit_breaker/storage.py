"""State storage for circuit breakers.

Storage is intentionally decoupled from breaker logic. Custom backends (for
example Redis) can implement the interface for multi-process coordination.

Every mutating method applies one whole transition under the per-breaker lock
and returns ``(previous_state, updated_snapshot)``, so callers never observe a
counter change without the matching state change.
"""

import asyncio
import sys
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from pep_screening.circuit_breaker.state import BreakerSnapshot, CircuitState

Transition = tuple[CircuitState, BreakerSnapshot]
ProbeClaim = tuple[bool, BreakerSnapshot]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AbstractBreakerStorage(ABC):
    """Abstract breaker storage interface."""

    @abstractmethod
    async def get_state(self, name: str) -> BreakerSnapshot:
        """Return the current breaker snapshot for ``name``."""

    @abstractmethod
    async def try_begin_probe(self, name: str) -> ProbeClaim:
        """Move a due ``OPEN`` breaker to ``HALF_OPEN``.

        Returns ``(claimed, snapshot)``. ``claimed`` is true only for the caller
        that won the transition; ``snapshot`` is the state after the attempt,
        so a losing caller can tell a breaker that has since closed from one
        that is still open or already probing.
        """

    @abstractmethod
    async def record_success(self, name: str, *, probe: bool) -> Transition:
        """Record a successful call; a successful probe closes the breaker."""

    @abstractmethod
    async def record_failure(
        self,
        name: str,
        *,
        probe: bool,
        failure_threshold: int,
        recovery_timeout: float,
    ) -> Transition:
        """Record a counted failure and open the breaker when required."""

    @abstractmethod
    async def abandon_probe(
        self, name: str, next_attempt_at: datetime | None
    ) -> Transition:
        """Return a ``HALF_OPEN`` breaker to ``OPEN`` without counting."""

    @abstractmethod
    async def force_open(self, name: str, recovery_timeout: float) -> Transition:
        """Force breaker ``name`` into ``OPEN`` state."""

    @abstractmethod
    async def reset(self, name: str) -> Transition:
        """Reset breaker ``name`` to a healthy ``CLOSED`` state."""


class InMemoryBreakerStorage(AbstractBreakerStorage):
    """In-memory storage with per-breaker cooperative + optional thread locks."""

    def __init__(self) -> None:
        """Initialize in-memory snapshot and lock registries."""
        self._snapshots: dict[str, BreakerSnapshot] = {}
        self._async_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._thread_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        is_gil_enabled = getattr(sys, "_is_gil_enabled", None)
        self._gil_enabled = True if is_gil_enabled is None else bool(is_gil_enabled())

    def _default_snapshot(self, name: str) -> BreakerSnapshot:
        return BreakerSnapshot(
            name=name,
            state=CircuitState.CLOSED,
            failure_count=0,
            success_count=0,
            last_failure_at=None,
            next_attempt_at=None,
        )

    def _current(self, name: str) -> BreakerSnapshot:
        snapshot = self._snapshots.get(name)
        if snapshot is None:
            snapshot = self._default_snapshot(name)
            self._snapshots[name] = snapshot
        return snapshot

    def _store(self, previous: BreakerSnapshot, updated: BreakerSnapshot) -> Transition:
        self._snapshots[updated.name] = updated
        return previous.state, updated

    @asynccontextmanager
    async def _locked(self, name: str) -> AsyncIterator[None]:
        async_lock = self._async_locks[name]
        if self._gil_enabled:
            await async_lock.acquire()
            try:
                yield
            finally:
                async_lock.release()
            return

        thread_lock = self._thread_locks[name]
        thread_lock.acquire()
        try:
            await async_lock.acquire()
        except Exception:
            thread_lock.release()
            raise
        try:
            yield
        finally:
            async_lock.release()
            thread_lock.release()

    async def get_state(self, name: str) -> BreakerSnapshot:
        """Return the current snapshot, creating a default one if missing."""
        async with self._locked(name):
            return self._current(name)

    async def try_begin_probe(self, name: str) -> ProbeClaim:
        """Claim the single half-open probe slot when the recovery window ended."""
        async with self._locked(name):
            snapshot = self._current(name)
            if snapshot.state != CircuitState.OPEN:
                return False, snapshot
            due_at = snapshot.next_attempt_at
            if due_at is not None and _utcnow() < due_at:
                return False, snapshot
            updated = replace(
                snapshot, state=CircuitState.HALF_OPEN, next_attempt_at=None
            )
            self._snapshots[name] = updated
            return True, updated

    async def record_success(self, name: str, *, probe: bool) -> Transition:
        """Count a success and close the breaker if it was the active probe."""
        async with self._locked(name):
            snapshot = self._current(name)
            if probe and snapshot.state == CircuitState.HALF_OPEN:
                updated = replace(
                    snapshot,
                    state=CircuitState.CLOSED,
                    failure_count=0,
                    success_count=snapshot.success_count + 1,
                    next_attempt_at=None,
                )
            else:
                updated = replace(snapshot, success_count=snapshot.success_count + 1)
            return self._store(snapshot, updated)

    async def record_failure(
        self,
        name: str,
        *,
        probe: bool,
        failure_threshold: int,
        recovery_timeout: float,
    ) -> Transition:
        """Increment failure counters and trip the breaker when required.

        A failed probe reopens the breaker. A failure while ``CLOSED`` opens
        it once ``failure_threshold`` is reached. Late failures from calls
        admitted before a transition only update the counters.
        """
        async with self._locked(name):
            snapshot = self._current(name)
            now = _utcnow()
            failure_count = snapshot.failure_count + 1
            trips = (probe and snapshot.state == CircuitState.HALF_OPEN) or (
                snapshot.state == CircuitState.CLOSED
                and failure_count >= failure_threshold
            )
            if trips:
                updated = replace(
                    snapshot,
                    state=CircuitState.OPEN,
                    failure_count=failure_count,
                    last_failure_at=now,
                    next_attempt_at=now + timedelta(seconds=recovery_timeout),
                )
            else:
                updated = replace(
                    snapshot,
                    failure_count=failure_count,
                    last_failure_at=now,
                )
            return self._store(snapshot, updated)

    async def abandon_probe(
        self, name: str, next_attempt_at: datetime | None
    ) -> Transition:
        """Reopen after a probe that ended without a verdict.

        The previous ``next_attempt_at`` is restored, so a later call may
        attempt a fresh probe straight away.
        """
        async with self._locked(name):
            snapshot = self._current(name)
            if snapshot.state != CircuitState.HALF_OPEN:
                return snapshot.state, snapshot
            updated = replace(
                snapshot,
                state=CircuitState.OPEN,
                next_attempt_at=(
                    _utcnow() if next_attempt_at is None else next_attempt_at
                ),
            )
            return self._store(snapshot, updated)

    async def force_open(self, name: str, recovery_timeout: float) -> Transition:
        """Force the circuit open and restart the recovery timeout window."""
        async with self._locked(name):
            snapshot = self._current(name)
            updated = replace(
                snapshot,
                state=CircuitState.OPEN,
                next_attempt_at=_utcnow() + timedelta(seconds=recovery_timeout),
            )
            return self._store(snapshot, updated)

    async def reset(self, name: str) -> Transition:
        """Reset breaker state and counters to a healthy default snapshot."""
        async with self._locked(name):
            snapshot = self._current(name)
            return self._store(snapshot, self._default_snapshot(name))
