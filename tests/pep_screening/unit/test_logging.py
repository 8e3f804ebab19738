from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from typing import Protocol, cast

import pytest
import structlog

from pep_screening.logging import (
    REDACTED,
    configure_structlog,
    get_log_level_value,
    hash_pii,
    log_error,
    log_exception,
    log_info,
    log_warning,
    redact_sensitive_fields,
)


def _configured_renderer() -> object:
    root_handler = logging.getLogger().handlers[0]
    formatter = root_handler.formatter
    assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
    return formatter.processors[-1]


def test_get_log_level_value_maps_known_levels() -> None:
    assert get_log_level_value("debug") == logging.DEBUG
    assert get_log_level_value("INFO") == logging.INFO
    assert get_log_level_value(" warning ") == logging.WARNING
    assert get_log_level_value("ERROR") == logging.ERROR
    assert get_log_level_value("critical") == logging.CRITICAL


def test_get_log_level_value_rejects_unknown_level() -> None:
    with pytest.raises(ValueError):
        get_log_level_value("TRACE")


def test_configure_structlog_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)

    first_logger = configure_structlog(log_level="INFO")
    second_logger = configure_structlog(log_level="DEBUG")

    assert len(logging.getLogger().handlers) == 1
    assert logging.getLogger().level == logging.DEBUG
    assert first_logger is not None
    assert second_logger is not None


def test_configure_structlog_uses_console_renderer_for_tty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: True, raising=False)

    configure_structlog(log_level="INFO")
    renderer = _configured_renderer()

    assert isinstance(renderer, structlog.dev.ConsoleRenderer)


def test_configure_structlog_uses_json_renderer_for_non_tty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)

    configure_structlog(log_level="INFO")
    renderer = _configured_renderer()

    assert isinstance(renderer, structlog.processors.JSONRenderer)


def test_redact_sensitive_fields_masks_credentials_recursively() -> None:
    event_dict: structlog.typing.EventDict = {
        "event": "screening.request.completed",
        "api_key": "secret-value",
        "headers": {"X-Api-Key": "secret-value", "Accept": "application/json"},
        "endpoint": "/v1/checkIndividual",
    }

    redacted = redact_sensitive_fields(None, "info", event_dict)

    assert redacted == {
        "event": "screening.request.completed",
        "api_key": REDACTED,
        "headers": {"X-Api-Key": REDACTED, "Accept": "application/json"},
        "endpoint": "/v1/checkIndividual",
    }


def test_redact_sensitive_fields_keeps_event_name() -> None:
    event_dict: structlog.typing.EventDict = {"event": "token.refreshed"}

    assert redact_sensitive_fields(None, "info", event_dict) == {
        "event": "token.refreshed"
    }


def test_hash_pii_is_stable_and_short() -> None:
    first = hash_pii("Vladimir Putin")

    assert first == hash_pii("Vladimir Putin")
    assert first != hash_pii("vladimir putin")
    assert len(first) == 17
    assert "Putin" not in first


class _CaptureHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


class _FakeStructuredLogger:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, object]]] = []

    def info(self, event: str, **kwargs: object) -> None:
        self.calls.append(("info", event, dict(kwargs)))

    def warning(self, event: str, **kwargs: object) -> None:
        self.calls.append(("warning", event, dict(kwargs)))

    def error(self, event: str, **kwargs: object) -> None:
        self.calls.append(("error", event, dict(kwargs)))

    def exception(self, event: str, **kwargs: object) -> None:
        self.calls.append(("exception", event, dict(kwargs)))


class _RecordWithStructuredFields(Protocol):
    endpoint: str
    status: int


@pytest.mark.parametrize(
    ("log_fn", "level"),
    [
        (log_info, "info"),
        (log_warning, "warning"),
        (log_error, "error"),
        (log_exception, "exception"),
    ],
)
def test_structured_log_helpers_forward_keyword_fields(
    log_fn: Callable[..., None],
    level: str,
) -> None:
    logger = _FakeStructuredLogger()

    log_fn(logger, "screening.event", endpoint="/v1/checkEntity", attempt=3)

    assert logger.calls == [
        (
            level,
            "screening.event",
            {"endpoint": "/v1/checkEntity", "attempt": 3},
        )
    ]


def test_structured_log_helpers_support_stdlib_logger_extra() -> None:
    logger = logging.getLogger("tests.pep_screening.logging.helpers")
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(logging.INFO)
    handler = _CaptureHandler()
    logger.addHandler(handler)

    log_info(logger, "screening.request.completed", endpoint="/v1/x", status=200)

    assert len(handler.records) == 1
    record = handler.records[0]
    typed_record = cast(_RecordWithStructuredFields, record)
    assert record.getMessage() == "screening.request.completed"
    assert typed_record.endpoint == "/v1/x"
    assert typed_record.status == 200
