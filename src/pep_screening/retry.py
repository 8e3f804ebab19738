from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    stop_after_attempt,
    stop_never,
    wait_exponential_jitter,
)
from tenacity.retry import retry_base
from tenacity.wait import wait_base


@dataclass(frozen=True)
class RetryBackoffPolicy:
    """Configuration for retry attempt count and backoff boundaries."""

    attempts: int | None
    min_seconds: float
    max_seconds: float

    def __post_init__(self) -> None:
        if self.attempts is not None and self.attempts < 1:
            raise ValueError("attempts must be >= 1 when provided")
        if self.min_seconds < 0:
            raise ValueError("min_seconds must be >= 0")
        if self.max_seconds < 0:
            raise ValueError("max_seconds must be >= 0")
        if self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds must be >= min_seconds")


class _WaitRetryAfter(wait_base):
    """Prefer an exception's ``suggested_retry_delay`` over the fallback wait."""

    def __init__(self, fallback: wait_base, max_seconds: float) -> None:
        self._fallback = fallback
        self._max_seconds = max_seconds

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            delay = getattr(outcome.exception(), "suggested_retry_delay", None)
            if isinstance(delay, (int, float)):
                return min(max(float(delay), 0.0), self._max_seconds)
        return self._fallback(retry_state)


def wait_retry_after_or(fallback: wait_base, *, max_seconds: float) -> wait_base:
    """Wait for a server-provided retry delay, capped, else use ``fallback``."""
    return _WaitRetryAfter(fallback, max_seconds)


def build_exponential_jitter_retrying(
    *,
    retry: retry_base,
    policy: RetryBackoffPolicy,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    reraise: bool = True,
    honor_retry_after: bool = False,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` with exponential jitter backoff.

    With ``honor_retry_after`` the wait uses a failed attempt's
    ``suggested_retry_delay`` (for example a ``Retry-After`` header), capped
    at ``policy.max_seconds``.
    """
    stop = (
        stop_never if policy.attempts is None else stop_after_attempt(policy.attempts)
    )
    wait: wait_base = wait_exponential_jitter(
        initial=policy.min_seconds,
        max=policy.max_seconds,
    )
    if honor_retry_after:
        wait = wait_retry_after_or(wait, max_seconds=policy.max_seconds)

    options: dict[str, Any] = {}
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(
        retry=retry,
        wait=wait,
        stop=stop,
        reraise=reraise,
        **options,
    )
