"""Core circuit breaker implementation."""

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import NoReturn, ParamSpec, TypeVar

from pep_screening.circuit_breaker.exceptions import CallTimeoutError, CircuitOpenError
from pep_screening.circuit_breaker.metrics import BreakerListener
from pep_screening.circuit_breaker.state import (
    BreakerMetrics,
    BreakerSnapshot,
    CircuitState,
)
from pep_screening.circuit_breaker.storage import (
    AbstractBreakerStorage,
    InMemoryBreakerStorage,
)

T = TypeVar("T")
P = ParamSpec("P")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _discard_outcome(task: asyncio.Future[object]) -> None:
    with suppress(asyncio.CancelledError, Exception):
        task.exception()


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Failures required while ``CLOSED`` before opening.
        recovery_timeout: Seconds to wait while ``OPEN`` before allowing a probe.
        call_timeout: Seconds a protected call may run before it is abandoned
            and counted as a failure. ``None`` disables the bound.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that must not count as failures.
        classifier: Optional predicate applied to expected, non-excluded
            exceptions; returning ``False`` lets the failure pass uncounted.
    """

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    call_timeout: float | None = 30.0
    expected_exceptions: tuple[type[Exception], ...] = (Exception,)
    excluded_exceptions: tuple[type[Exception], ...] = ()
    classifier: Callable[[Exception], bool] | None = None

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.recovery_timeout < 0:
            raise ValueError("recovery_timeout must be >= 0")
        if self.call_timeout is not None and self.call_timeout <= 0:
            raise ValueError("call_timeout must be > 0 when provided")

    def counts_as_failure(self, exc: Exception) -> bool:
        """Return whether ``exc`` should be recorded against the breaker."""
        if isinstance(exc, self.excluded_exceptions):
            return False
        if not isinstance(exc, self.expected_exceptions):
            return False
        if self.classifier is None:
            return True
        return self.classifier(exc)


class CircuitBreaker:
    """Stateful proxy around a dangerous async operation."""

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        storage: AbstractBreakerStorage | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Build a circuit breaker with optional custom dependencies.

        Args:
            name: Unique breaker name used for storage and metrics.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            storage: State storage backend. Defaults to in-memory storage.
            listeners: Optional listener hooks for breaker events.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._storage = InMemoryBreakerStorage() if storage is None else storage
        self._listeners = tuple(listeners) if listeners is not None else ()

    async def _emit_state_change(
        self, old: CircuitState, new: CircuitState, snapshot: BreakerSnapshot
    ) -> None:
        for listener in self._listeners:
            try:
                await listener.on_state_change(self.name, old, new, snapshot)
            except Exception:
                continue

    async def _emit_call_rejected(self, snapshot: BreakerSnapshot) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_rejected(self.name, snapshot)
            except Exception:
                continue

    async def _emit_call_succeeded(self, elapsed: float) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_succeeded(self.name, elapsed)
            except Exception:
                continue

    async def _emit_call_failed(
        self, exc: Exception, elapsed: float, snapshot: BreakerSnapshot
    ) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_failed(self.name, exc, elapsed, snapshot)
            except Exception:
                continue

    @staticmethod
    def _retry_after(snapshot: BreakerSnapshot, now: datetime) -> float:
        if snapshot.next_attempt_at is None:
            return 0.0
        return max((snapshot.next_attempt_at - now).total_seconds(), 0.0)

    async def _reject(self, snapshot: BreakerSnapshot) -> NoReturn:
        await self._emit_call_rejected(snapshot)
        raise CircuitOpenError(
            self.name,
            snapshot.next_attempt_at,
            retry_after=self._retry_after(snapshot, _utcnow()),
        )

    async def _run_with_timeout(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        timeout = self.config.call_timeout
        if timeout is None:
            return await func(*args, **kwargs)

        task = asyncio.ensure_future(func(*args, **kwargs))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task in done:
            return task.result()

        # Best-effort cancellation: the operation may keep running unobserved.
        task.cancel()
        task.add_done_callback(_discard_outcome)
        raise CallTimeoutError(self.name, timeout)

    async def _record_failure(
        self, exc: Exception, elapsed: float, *, probe: bool
    ) -> None:
        previous, snapshot = await self._storage.record_failure(
            self.name,
            probe=probe,
            failure_threshold=self.config.failure_threshold,
            recovery_timeout=self.config.recovery_timeout,
        )
        await self._emit_call_failed(exc, elapsed, snapshot)
        if snapshot.state != previous:
            await self._emit_state_change(previous, snapshot.state, snapshot)

    async def _record_success(self, elapsed: float, *, probe: bool) -> None:
        previous, snapshot = await self._storage.record_success(self.name, probe=probe)
        if snapshot.state != previous:
            await self._emit_state_change(previous, snapshot.state, snapshot)
        await self._emit_call_succeeded(elapsed)

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Args:
            func: Dangerous async callable to execute.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when allowed and successful.

        Raises:
            CircuitOpenError: When the circuit is open (or a probe is already
                in flight) and the call is rejected.
            CallTimeoutError: When ``func`` exceeds ``config.call_timeout``.
            Exception: The original exception from ``func`` when it is
                attempted and fails.
        """
        task = asyncio.current_task()
        if task is not None:
            callable_name = getattr(func, "__qualname__", None)
            if callable_name is None:
                callable_name = getattr(func, "__name__", None)
            if callable_name is None:
                callable_name = func.__class__.__qualname__
            task.set_name(f"circuit_breaker:{self.name}:{str(callable_name)}")

        snapshot = await self._storage.get_state(self.name)
        is_probe = False
        resume_at: datetime | None = None

        if snapshot.state != CircuitState.CLOSED:
            resume_at = snapshot.next_attempt_at
            # A breaker closed by another caller since the first read admits
            # this call as a normal closed call.
            is_probe, snapshot = await self._storage.try_begin_probe(self.name)
            if is_probe:
                await self._emit_state_change(
                    CircuitState.OPEN, CircuitState.HALF_OPEN, snapshot
                )
            elif snapshot.state != CircuitState.CLOSED:
                await self._reject(snapshot)

        settled = False
        start = time.monotonic()
        try:
            result = await self._run_with_timeout(func, *args, **kwargs)
        except CallTimeoutError as exc:
            settled = True
            await self._record_failure(
                exc, max(time.monotonic() - start, 0.0), probe=is_probe
            )
            raise
        except Exception as exc:
            if not self.config.counts_as_failure(exc):
                raise
            settled = True
            await self._record_failure(
                exc, max(time.monotonic() - start, 0.0), probe=is_probe
            )
            raise
        else:
            settled = True
            await self._record_success(
                max(time.monotonic() - start, 0.0), probe=is_probe
            )
            return result
        finally:
            if is_probe and not settled:
                previous, reopened = await self._storage.abandon_probe(
                    self.name, resume_at
                )
                if reopened.state != previous:
                    await self._emit_state_change(previous, reopened.state, reopened)

    async def snapshot(self) -> BreakerSnapshot:
        """Return the current breaker snapshot."""
        return await self._storage.get_state(self.name)

    async def metrics(self) -> BreakerMetrics:
        """Return current counters alongside the breaker configuration."""
        snapshot = await self._storage.get_state(self.name)
        return BreakerMetrics(
            name=self.name,
            state=snapshot.state,
            failure_count=snapshot.failure_count,
            success_count=snapshot.success_count,
            failure_threshold=self.config.failure_threshold,
            recovery_timeout=self.config.recovery_timeout,
            call_timeout=self.config.call_timeout,
            last_failure_at=snapshot.last_failure_at,
            next_attempt_at=snapshot.next_attempt_at,
        )

    async def reset(self) -> BreakerSnapshot:
        """Force the breaker ``CLOSED`` with all counters zeroed."""
        previous, snapshot = await self._storage.reset(self.name)
        if snapshot.state != previous:
            await self._emit_state_change(previous, snapshot.state, snapshot)
        return snapshot

    async def force_open(self) -> BreakerSnapshot:
        """Force the breaker ``OPEN`` with a fresh recovery window."""
        previous, snapshot = await self._storage.force_open(
            self.name, self.config.recovery_timeout
        )
        if snapshot.state != previous:
            await self._emit_state_change(previous, snapshot.state, snapshot)
        return snapshot
