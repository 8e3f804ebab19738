"""Shared error types for pep_screening.

Every error raised by the screening client derives from ``ScreeningError``
and carries an ``error_code``, a ``request_id`` for correlation, a UTC
timestamp and a ``retryable`` hint used by the client's retry and breaker
policies.
"""

from __future__ import annotations

import re
import secrets
from collections.abc import Mapping
from datetime import UTC, datetime

MAX_BODY_LENGTH = 1000
MAX_HEADER_VALUE_LENGTH = 100
_SENSITIVE = re.compile(r"authorization|api.?key|token|secret|password", re.I)
_STATUS_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    429: "RATE_LIMITED",
    500: "INTERNAL_SERVER_ERROR",
    502: "BAD_GATEWAY",
    503: "SERVICE_UNAVAILABLE",
    504: "GATEWAY_TIMEOUT",
}


class TransientError(RuntimeError):
    """Generic retry-safe transient dependency failure."""


class ScreeningError(Exception):
    """Base exception for screening client failures."""

    default_error_code = "SCREENING_ERROR"

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        context: Mapping[str, object] | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = self.default_error_code if error_code is None else error_code
        self.context: dict[str, object] = dict(context or {})
        self.request_id = secrets.token_hex(8) if request_id is None else request_id
        self.timestamp = datetime.now(UTC).isoformat()

    @property
    def retryable(self) -> bool:
        return False

    @property
    def security_event(self) -> bool:
        return False

    def to_dict(self) -> dict[str, object]:
        """Return a structured representation suitable for logs and audits."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": dict(self.context),
            "timestamp": self.timestamp,
            "request_id": self.request_id,
            "retryable": self.retryable,
        }


def _sanitize_config_value(value: object) -> object:
    text = "" if value is None else str(value)
    if _SENSITIVE.search(text):
        return "[REDACTED]"
    if len(text) > 50:
        return f"{text[:11]}..."
    return value


class ConfigurationError(ScreeningError):
    """Raised when client configuration is missing or invalid."""

    default_error_code = "CONFIG_ERROR"

    def __init__(
        self,
        message: str,
        *,
        config_key: str | None = None,
        config_value: object = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            context={
                "config_key": config_key,
                "config_value": _sanitize_config_value(config_value),
            },
            request_id=request_id,
        )
        self.config_key = config_key

    @property
    def security_event(self) -> bool:
        return self.config_key is not None and bool(
            re.search(r"api_key|secret|token", self.config_key)
        )


class ParameterValidationError(ScreeningError):
    """Raised when screening parameters are missing, conflicting or rejected."""

    default_error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        validation_errors: list[str] | None = None,
        field: str | None = None,
        status: int | None = None,
        body: str | None = None,
        request_id: str | None = None,
    ) -> None:
        errors = list(validation_errors or [])
        super().__init__(
            message,
            context={
                "field": field,
                "validation_errors": errors,
                "error_count": len(errors),
                "status": status,
            },
            request_id=request_id,
        )
        self.validation_errors = errors
        self.field = field
        self.status = status
        self.body = body


def _truncate_body(body: str | None) -> str | None:
    if body is None or len(body) <= MAX_BODY_LENGTH:
        return body
    return f"{body[:MAX_BODY_LENGTH]}... (truncated)"


def _sanitize_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    sanitized: dict[str, str] = {}
    for key, value in (headers or {}).items():
        if _SENSITIVE.search(key):
            sanitized[key] = "[REDACTED]"
        elif len(value) > MAX_HEADER_VALUE_LENGTH:
            sanitized[key] = f"{value[:MAX_HEADER_VALUE_LENGTH]}..."
        else:
            sanitized[key] = value
    return sanitized


class APIError(ScreeningError):
    """Raised when the screening API answers with an error response."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: str | None = None,
        headers: Mapping[str, str] | None = None,
        endpoint: str | None = None,
        error_code: str | None = None,
        request_id: str | None = None,
    ) -> None:
        resolved_code = error_code
        if resolved_code is None:
            resolved_code = _STATUS_ERROR_CODES.get(status or 0, "API_ERROR")
        super().__init__(
            message,
            error_code=resolved_code,
            context={
                "status": status,
                "response_size": None if body is None else len(body),
                "endpoint": endpoint,
            },
            request_id=request_id,
        )
        self.status = status
        self.body = _truncate_body(body)
        self.headers = _sanitize_headers(headers)
        self.endpoint = endpoint

    @property
    def retryable(self) -> bool:
        return self.status is not None and (self.status == 429 or self.server_error)

    @property
    def client_error(self) -> bool:
        return self.status is not None and 400 <= self.status <= 499

    @property
    def server_error(self) -> bool:
        return self.status is not None and 500 <= self.status <= 599


class AuthenticationError(APIError):
    """Raised when the API key is rejected (HTTP 401)."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = 401,
        body: str | None = None,
        headers: Mapping[str, str] | None = None,
        endpoint: str | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            status=status,
            body=body,
            headers=headers,
            endpoint=endpoint,
            error_code="AUTH_ERROR",
            request_id=request_id,
        )

    @property
    def retryable(self) -> bool:
        return False

    @property
    def security_event(self) -> bool:
        return True


class RateLimitError(APIError):
    """Raised when the API rejects a request with HTTP 429."""

    default_retry_delay = 60.0

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        limit: int | None = None,
        remaining: int | None = None,
        status: int | None = 429,
        body: str | None = None,
        headers: Mapping[str, str] | None = None,
        endpoint: str | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            status=status,
            body=body,
            headers=headers,
            endpoint=endpoint,
            error_code="RATE_LIMITED",
            request_id=request_id,
        )
        self.retry_after = retry_after
        self.limit = limit
        self.remaining = remaining
        self.context.update(
            {
                "retry_after": retry_after,
                "rate_limit": limit,
                "rate_remaining": remaining,
            }
        )

    @property
    def retryable(self) -> bool:
        return True

    @property
    def suggested_retry_delay(self) -> float:
        if self.retry_after is None:
            return self.default_retry_delay
        return self.retry_after


class NetworkError(ScreeningError, TransientError):
    """Raised when the API cannot be reached."""

    default_error_code = "NETWORK_ERROR"

    def __init__(
        self,
        message: str,
        *,
        network_error: BaseException | None = None,
        error_code: str | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            error_code=error_code,
            context={
                "network_error_class": (
                    None if network_error is None else network_error.__class__.__name__
                ),
                "network_error_message": (
                    None if network_error is None else str(network_error)
                ),
            },
            request_id=request_id,
        )

    @property
    def retryable(self) -> bool:
        return True


def _timeout_type(message: str) -> str:
    lowered = message.lower()
    for kind in ("connection", "read", "write"):
        if kind in lowered:
            return f"{kind}_timeout"
    return "general_timeout"


class NetworkTimeoutError(NetworkError):
    """Raised when the API does not answer within the configured timeout."""

    def __init__(
        self,
        message: str,
        *,
        timeout_seconds: float | None = None,
        network_error: BaseException | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            network_error=network_error,
            error_code="TIMEOUT_ERROR",
            request_id=request_id,
        )
        self.timeout_seconds = timeout_seconds
        self.timeout_type = _timeout_type(message)
        self.context.update(
            {"timeout_seconds": timeout_seconds, "timeout_type": self.timeout_type}
        )


class DataProcessingError(ScreeningError):
    """Raised when a successful response cannot be interpreted."""

    default_error_code = "DATA_PROCESSING_ERROR"

    def __init__(
        self,
        message: str,
        *,
        data_type: str | None = None,
        processing_stage: str | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            context={"data_type": data_type, "processing_stage": processing_stage},
            request_id=request_id,
        )
        self.data_type = data_type
        self.processing_stage = processing_stage
