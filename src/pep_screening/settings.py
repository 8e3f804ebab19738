from __future__ import annotations

from pydantic import ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pep_screening.logging import get_log_level_value
from pep_screening.screening.constants import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_SECONDS

ENV_PREFIX = "DILISENSE_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class ScreeningSettings(BaseSettings):
    """Settings for the screening API client, read from ``DILISENSE_*``."""

    model_config = prefixed_settings_config(ENV_PREFIX)

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    breaker_failure_threshold: int = 5
    breaker_recovery_timeout_seconds: float = 60.0
    breaker_call_timeout_seconds: float = 30.0
    retry_attempts: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 5.0
    log_level: str = "INFO"

    @field_validator("api_key", "base_url", mode="before")
    @classmethod
    def _validate_required_string(cls, value: object, info: ValidationInfo) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{info.field_name} must be non-empty")
        return normalized

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        get_log_level_value(value)
        return value.strip().upper()

    @model_validator(mode="after")
    def _validate_screening_settings(self) -> ScreeningSettings:
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.breaker_failure_threshold < 1:
            raise ValueError("breaker_failure_threshold must be >= 1")
        if self.breaker_recovery_timeout_seconds < 0:
            raise ValueError("breaker_recovery_timeout_seconds must be >= 0")
        if self.breaker_call_timeout_seconds <= 0:
            raise ValueError("breaker_call_timeout_seconds must be > 0")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")
        if self.retry_min_seconds < 0:
            raise ValueError("retry_min_seconds must be >= 0")
        if self.retry_max_seconds < self.retry_min_seconds:
            raise ValueError("retry_max_seconds must be >= retry_min_seconds")
        return self
