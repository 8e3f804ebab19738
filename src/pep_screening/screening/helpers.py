"""Helpers for building screening requests and interpreting responses."""

from __future__ import annotations

import math
import re
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import cast

import httpx

from pep_screening.errors import (
    APIError,
    AuthenticationError,
    DataProcessingError,
    ParameterValidationError,
    RateLimitError,
)
from pep_screening.screening.constants import (
    BOTH_QUERIES_MESSAGE,
    MISSING_QUERY_MESSAGE,
)

_SECONDS = re.compile(r"\d+(?:\.\d+)?")


def _clean(value: object) -> object:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def build_query_params(**params: object) -> dict[str, str]:
    """Drop unset values and enforce the ``names``/``search_all`` rules."""
    cleaned = {key: _clean(value) for key, value in params.items()}
    query = {key: str(value) for key, value in cleaned.items() if value is not None}
    has_names = "names" in query
    has_search_all = "search_all" in query
    if has_names and has_search_all:
        raise ParameterValidationError(
            BOTH_QUERIES_MESSAGE,
            validation_errors=[BOTH_QUERIES_MESSAGE],
            field="names",
        )
    if not has_names and not has_search_all:
        raise ParameterValidationError(
            MISSING_QUERY_MESSAGE,
            validation_errors=[MISSING_QUERY_MESSAGE],
            field="names",
        )
    return query


def parse_retry_after(
    value: str | None,
    *,
    now: datetime | None = None,
) -> float | None:
    """Parse a ``Retry-After`` header given as seconds or an HTTP date."""
    if value is None or not value.strip():
        return None
    text = value.strip()
    if _SECONDS.fullmatch(text):
        seconds = float(text)
        return seconds if math.isfinite(seconds) else None
    try:
        retry_at = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    current = datetime.now(UTC) if now is None else now
    return max((retry_at - current).total_seconds(), 0.0)


def _parse_int_header(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def raise_for_status(
    response: httpx.Response,
    *,
    endpoint: str,
    request_id: str | None = None,
) -> None:
    """Raise the screening error matching a non-200 response."""
    status = response.status_code
    if status == 200:
        return
    body = response.text
    headers = dict(response.headers)
    if status == 400:
        raise ParameterValidationError(
            f"Bad request: {body}",
            status=status,
            body=body,
            request_id=request_id,
        )
    if status == 401:
        raise AuthenticationError(
            "API key not valid",
            status=status,
            body=body,
            headers=headers,
            endpoint=endpoint,
            request_id=request_id,
        )
    if status == 429:
        raise RateLimitError(
            "Rate limit exceeded",
            retry_after=parse_retry_after(response.headers.get("retry-after")),
            limit=_parse_int_header(response.headers.get("x-ratelimit-limit")),
            remaining=_parse_int_header(response.headers.get("x-ratelimit-remaining")),
            body=body,
            headers=headers,
            endpoint=endpoint,
            request_id=request_id,
        )
    if status == 403:
        message = "Forbidden"
    elif status == 500:
        message = "Internal server error"
    else:
        message = f"Unexpected response: {status}"
    raise APIError(
        message,
        status=status,
        body=body,
        headers=headers,
        endpoint=endpoint,
        request_id=request_id,
    )


def parse_payload(
    response: httpx.Response,
    *,
    endpoint: str,
    request_id: str | None = None,
) -> dict[str, object]:
    """Decode a successful response body into a JSON object."""
    try:
        payload = response.json()
    except ValueError as exc:
        raise APIError(
            "Invalid JSON response",
            status=response.status_code,
            body=response.text,
            endpoint=endpoint,
            request_id=request_id,
        ) from exc
    if not isinstance(payload, dict):
        raise DataProcessingError(
            "Response is not a JSON object",
            data_type=type(payload).__name__,
            processing_stage="parse_response",
            request_id=request_id,
        )
    return cast(dict[str, object], payload)


def extract_hits(
    payload: dict[str, object],
) -> tuple[int, list[dict[str, object]]]:
    """Return ``total_hits`` and ``found_records`` after shape checks."""
    total_hits = payload.get("total_hits")
    if isinstance(total_hits, bool) or not isinstance(total_hits, int):
        raise DataProcessingError(
            "Response total_hits is not an integer",
            data_type=type(total_hits).__name__,
            processing_stage="extract_hits",
        )
    records = payload.get("found_records")
    if records is None:
        records = []
    if not isinstance(records, list):
        raise DataProcessingError(
            "Response found_records is not a list",
            data_type=type(records).__name__,
            processing_stage="extract_hits",
        )
    for record in records:
        if not isinstance(record, dict):
            raise DataProcessingError(
                "Response record is not a JSON object",
                data_type=type(record).__name__,
                processing_stage="extract_hits",
            )
    return total_hits, cast(list[dict[str, object]], records)
