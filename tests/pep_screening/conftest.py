from __future__ import annotations

import pytest

from tests.pep_screening.support.fakes import FakeLogger, RecordingSleep


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Provide an async sleep that returns immediately and records delays."""
    return RecordingSleep()


@pytest.fixture(autouse=True)
def _clear_dilisense_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "DILISENSE_API_KEY",
        "DILISENSE_BASE_URL",
        "DILISENSE_TIMEOUT_SECONDS",
        "DILISENSE_LOG_LEVEL",
        "DILISENSE_RETRY_ATTEMPTS",
    ):
        monkeypatch.delenv(key, raising=False)
