from __future__ import annotations

import secrets
import time
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import TYPE_CHECKING

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception

from pep_screening.circuit_breaker import (
    CallTimeoutError,
    CircuitBreaker,
    CircuitBreakerConfig,
    InMemoryBreakerStorage,
    LoggingBreakerListener,
)
from pep_screening.errors import (
    ConfigurationError,
    NetworkError,
    NetworkTimeoutError,
    ScreeningError,
)
from pep_screening.logging import (
    StructuredLogger,
    configure_structlog,
    hash_pii,
    log_info,
    log_warning,
)
from pep_screening.retry import RetryBackoffPolicy, build_exponential_jitter_retrying
from pep_screening.screening.constants import (
    API_KEY_HEADER,
    BREAKER_NAME,
    DEFAULT_BASE_URL,
    DEFAULT_TIMEOUT_SECONDS,
    ENTITY_ENDPOINT,
    INDIVIDUAL_ENDPOINT,
    USER_AGENT,
)
from pep_screening.screening.helpers import (
    build_query_params,
    extract_hits,
    parse_payload,
    raise_for_status,
)
from pep_screening.screening.metrics import ScreeningMetrics
from pep_screening.screening.normalize import (
    MatchSummary,
    normalize_name,
    normalize_response,
)

if TYPE_CHECKING:
    from pep_screening.settings import ScreeningSettings

__all__ = [
    "MatchSummary",
    "ScreeningClient",
    "ScreeningMetrics",
    "build_breaker",
    "normalize_name",
    "normalize_response",
]


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, CallTimeoutError):
        return True
    return isinstance(exc, ScreeningError) and exc.retryable


def _counts_against_breaker(exc: Exception) -> bool:
    return isinstance(exc, ScreeningError) and exc.retryable


def build_breaker(
    *,
    failure_threshold: int = 5,
    recovery_timeout: float = 60.0,
    call_timeout: float | None = 30.0,
    logger: StructuredLogger | None = None,
) -> CircuitBreaker:
    """Build the breaker guarding the screening API.

    Only retryable upstream failures count against it, so rejected
    credentials or bad parameters never open the circuit.
    """
    return CircuitBreaker(
        BREAKER_NAME,
        config=CircuitBreakerConfig(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            call_timeout=call_timeout,
            classifier=_counts_against_breaker,
        ),
        storage=InMemoryBreakerStorage(),
        listeners=[
            LoggingBreakerListener(failure_threshold=failure_threshold, logger=logger)
        ],
    )


class ScreeningClient:
    """PEP and sanctions screening client with retries and a circuit breaker."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
        breaker: CircuitBreaker | None = None,
        retry_attempts: int = 3,
        retry_min_seconds: float = 0.5,
        retry_max_seconds: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: StructuredLogger | None = None,
        metrics: ScreeningMetrics | None = None,
    ) -> None:
        """Create a screening client.

        Args:
            api_key: Key sent in the ``x-api-key`` header.
            base_url: API root URL.
            timeout: HTTP timeout in seconds for clients created here.
            client: Optional shared async HTTP client. The screening client
                only closes clients it created itself.
            breaker: Optional circuit breaker. Defaults to ``build_breaker``.
            retry_attempts: Max attempts per screening request.
            retry_min_seconds: Minimum retry backoff in seconds.
            retry_max_seconds: Maximum retry backoff in seconds, also the cap
                applied to ``Retry-After`` waits.
            sleep: Optional async sleep used between retries.
            logger: Optional structured logger.
            metrics: Optional Prometheus metrics. Defaults to a
                ``ScreeningMetrics`` on its own registry.

        Raises:
            ConfigurationError: When ``api_key`` is missing or blank.
        """
        if api_key is None or not api_key.strip():
            raise ConfigurationError("API key is required", config_key="api_key")
        self._retry_policy = RetryBackoffPolicy(
            attempts=retry_attempts,
            min_seconds=retry_min_seconds,
            max_seconds=retry_max_seconds,
        )
        self._logger: StructuredLogger = (
            structlog.get_logger(__name__) if logger is None else logger
        )
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._owns_client = client is None
        self._client = httpx.AsyncClient(timeout=timeout) if client is None else client
        self._headers = {
            API_KEY_HEADER: api_key.strip(),
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        }
        self.breaker = (
            build_breaker(call_timeout=timeout, logger=self._logger)
            if breaker is None
            else breaker
        )
        self._sleep = sleep
        self.metrics = ScreeningMetrics() if metrics is None else metrics

    @classmethod
    def from_settings(
        cls,
        settings: ScreeningSettings,
        *,
        client: httpx.AsyncClient | None = None,
        logger: StructuredLogger | None = None,
        metrics: ScreeningMetrics | None = None,
    ) -> ScreeningClient:
        """Build a client from environment-backed settings.

        Without an explicit ``logger``, structlog is configured at
        ``settings.log_level`` and its logger is used.
        """
        if logger is None:
            logger = configure_structlog(log_level=settings.log_level)
        return cls(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
            client=client,
            breaker=build_breaker(
                failure_threshold=settings.breaker_failure_threshold,
                recovery_timeout=settings.breaker_recovery_timeout_seconds,
                call_timeout=settings.breaker_call_timeout_seconds,
                logger=logger,
            ),
            retry_attempts=settings.retry_attempts,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            logger=logger,
            metrics=metrics,
        )

    async def __aenter__(self) -> ScreeningClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client when this screening client created it."""
        if self._owns_client:
            await self._client.aclose()

    async def check_individual(
        self,
        *,
        names: str | None = None,
        search_all: str | None = None,
        dob: str | None = None,
        gender: str | None = None,
        fuzzy_search: int | None = None,
        includes: str | None = None,
    ) -> list[MatchSummary]:
        """Screen a person against PEP and sanctions sources.

        Args:
            names: Name to match against record names.
            search_all: Term matched against every record field.
            dob: Date of birth as ``DD/MM/YYYY``.
            gender: ``male`` or ``female``.
            fuzzy_search: ``1`` for fuzzy or ``2`` for very fuzzy matching.
            includes: Comma-separated source ids to restrict the search to.

        Returns:
            One ``MatchSummary`` per distinct normalized name.

        Raises:
            ParameterValidationError: When ``names`` and ``search_all`` are
                both or neither given, or the API rejects the query.
            CircuitOpenError: When the breaker rejects the request.
            NetworkTimeoutError: When the last attempt timed out.
        """
        params = build_query_params(
            names=names,
            search_all=search_all,
            dob=dob,
            gender=gender,
            fuzzy_search=fuzzy_search,
            includes=includes,
        )
        return await self._screen("individual", INDIVIDUAL_ENDPOINT, params)

    async def check_entity(
        self,
        *,
        names: str | None = None,
        search_all: str | None = None,
        fuzzy_search: int | None = None,
    ) -> list[MatchSummary]:
        """Screen a company or organisation against sanctions sources.

        Accepts the same query options as ``check_individual`` except the
        person-only ``dob``, ``gender`` and ``includes``, and raises the same
        errors.
        """
        params = build_query_params(
            names=names,
            search_all=search_all,
            fuzzy_search=fuzzy_search,
        )
        return await self._screen("entity", ENTITY_ENDPOINT, params)

    async def _screen(
        self,
        screening_type: str,
        endpoint: str,
        params: dict[str, str],
    ) -> list[MatchSummary]:
        self.metrics.record_screening_request(screening_type)
        start = time.monotonic()
        payload = await self._get_with_retry(endpoint, params)
        total_hits, records = extract_hits(payload)
        results = normalize_response(total_hits, records)
        self.metrics.record_screening_response(
            screening_type,
            total_hits=total_hits,
            results_count=len(results),
            duration_seconds=time.monotonic() - start,
        )
        log_info(
            self._logger,
            "screening.completed",
            screening_type=screening_type,
            query_hash=hash_pii(params.get("names", params.get("search_all"))),
            total_hits=total_hits,
            results_count=len(results),
        )
        return results

    async def _get_with_retry(
        self,
        endpoint: str,
        params: dict[str, str],
    ) -> dict[str, object]:
        retrying = self._build_retrying()
        try:
            async for attempt in retrying:
                with attempt:
                    return await self.breaker.call(self._get_once, endpoint, params)
        except CallTimeoutError as exc:
            raise NetworkTimeoutError(
                f"Request timeout after {exc.timeout_seconds:g} seconds",
                timeout_seconds=exc.timeout_seconds,
                network_error=exc,
            ) from exc

        raise RuntimeError("Screening retry loop exited unexpectedly.")

    async def _get_once(
        self,
        endpoint: str,
        params: dict[str, str],
    ) -> dict[str, object]:
        request_id = secrets.token_hex(8)
        start = time.monotonic()
        try:
            response = await self._client.get(
                f"{self._base_url}{endpoint}",
                params=params,
                headers=self._headers,
            )
        except httpx.TimeoutException as exc:
            error: ScreeningError = NetworkTimeoutError(
                _timeout_message(exc),
                timeout_seconds=self._timeout,
                network_error=exc,
                request_id=request_id,
            )
            self._request_failed(endpoint, None, start, error)
            raise error from exc
        except httpx.RequestError as exc:
            error = NetworkError(
                "Connection failed",
                network_error=exc,
                request_id=request_id,
            )
            self._request_failed(endpoint, None, start, error)
            raise error from exc

        try:
            raise_for_status(response, endpoint=endpoint, request_id=request_id)
            payload = parse_payload(response, endpoint=endpoint, request_id=request_id)
        except ScreeningError as exc:
            self._request_failed(endpoint, response, start, exc)
            raise

        self.metrics.record_api_call(
            endpoint,
            status=str(response.status_code),
            duration_seconds=time.monotonic() - start,
            response_size=len(response.content),
        )
        log_info(
            self._logger,
            "screening.request.completed",
            endpoint=endpoint,
            status=response.status_code,
            duration_ms=_elapsed_ms(start),
            request_id=request_id,
        )
        return payload

    def _request_failed(
        self,
        endpoint: str,
        response: httpx.Response | None,
        start: float,
        error: ScreeningError,
    ) -> None:
        status = None if response is None else response.status_code
        self.metrics.record_api_call(
            endpoint,
            status=error.error_code.lower() if status is None else str(status),
            duration_seconds=time.monotonic() - start,
            response_size=None if response is None else len(response.content),
        )
        log_warning(
            self._logger,
            "screening.request.failed",
            endpoint=endpoint,
            status=status,
            duration_ms=_elapsed_ms(start),
            request_id=error.request_id,
            error_code=error.error_code,
            retryable=error.retryable,
        )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = None if outcome is None else outcome.exception()
        sleep_seconds = (
            None if retry_state.next_action is None else retry_state.next_action.sleep
        )
        log_warning(
            self._logger,
            "screening.retry",
            attempt=retry_state.attempt_number,
            sleep_seconds=sleep_seconds,
            error_class=None if error is None else error.__class__.__name__,
            error_message=None if error is None else str(error),
        )

    def _build_retrying(self) -> AsyncRetrying:
        return build_exponential_jitter_retrying(
            retry=retry_if_exception(_is_retryable),
            policy=self._retry_policy,
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
            honor_retry_after=True,
        )


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 3)


def _timeout_message(exc: httpx.TimeoutException) -> str:
    if isinstance(exc, httpx.ConnectTimeout):
        return "Connection timeout"
    if isinstance(exc, httpx.ReadTimeout):
        return "Read timeout"
    if isinstance(exc, httpx.WriteTimeout):
        return "Write timeout"
    return "Request timeout"
