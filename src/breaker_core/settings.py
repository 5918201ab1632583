from __future__ import annotations

from typing import TextIO

import structlog
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from breaker_core.circuit_breaker.breaker import CircuitBreakerConfig
from breaker_core.logging import configure_structlog, get_log_level_value

BREAKER_ENV_PREFIX = "CIRCUIT_BREAKER_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class BreakerSettings(BaseSettings):
    """Environment-driven circuit breaker settings."""

    model_config = prefixed_settings_config(BREAKER_ENV_PREFIX)

    probe_timeout_ms: int = 5000
    cooldown_ms: int = 5000
    failure_count_threshold: int = 10
    failure_rate_threshold: float = 50.0
    log_level: str = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip().upper()
        get_log_level_value(normalized)
        return normalized

    @model_validator(mode="after")
    def _validate_breaker_settings(self) -> BreakerSettings:
        # CircuitBreakerConfigError is a ValueError, so pydantic reports it.
        self.to_config()
        return self

    def to_config(self) -> CircuitBreakerConfig:
        """Build an immutable breaker configuration from these settings."""
        return CircuitBreakerConfig(
            probe_timeout_ms=self.probe_timeout_ms,
            cooldown_ms=self.cooldown_ms,
            failure_count_threshold=self.failure_count_threshold,
            failure_rate_threshold=self.failure_rate_threshold,
        )


def configure_logging(
    settings: BreakerSettings,
    *,
    stream: TextIO | None = None,
) -> structlog.stdlib.BoundLogger:
    """Configure process logging at the level named by ``settings``."""
    return configure_structlog(log_level=settings.log_level, stream=stream)
