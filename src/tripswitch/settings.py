from __future__ import annotations

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tripswitch.circuit_breaker.breaker import CircuitBreakerConfig
from tripswitch.logging import get_log_level_value

ENV_PREFIX = "TRIPSWITCH_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class BreakerSettings(BaseSettings):
    """Environment-driven defaults for breakers and their logging."""

    model_config = prefixed_settings_config(ENV_PREFIX)

    failure_threshold: int = 5
    reset_timeout_seconds: float = 30.0
    half_open_trial_limit: int = 2
    log_level: str = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip().upper()
            get_log_level_value(normalized)
            return normalized
        return value

    @model_validator(mode="after")
    def _validate_breaker_settings(self) -> BreakerSettings:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout_seconds <= 0:
            raise ValueError("reset_timeout_seconds must be > 0")
        if self.half_open_trial_limit < 1:
            raise ValueError("half_open_trial_limit must be >= 1")
        return self

    def to_config(self) -> CircuitBreakerConfig:
        """Build a breaker config from these settings."""
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            reset_timeout=self.reset_timeout_seconds,
            half_open_trial_limit=self.half_open_trial_limit,
        )
