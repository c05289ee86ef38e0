"""Configuration settings for the Yakuza engine.

Settings are loaded with pydantic-settings from environment variables
(``YAKUZA_`` prefix, ``__`` as the nested delimiter) and an optional ``.env``
file. Values here only provide defaults: anything passed explicitly to a
task definition or a job wins.

Example:
    YAKUZA_LOG_LEVEL=DEBUG
    YAKUZA_SCHEDULER__DEFAULT_MAX_RETRIES=2
    YAKUZA_SCHEDULER__RETRY_BASE_DELAY=0.5

"""

import logging
import os
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """Defaults applied by the scheduler and by new task definitions."""

    model_config = SettingsConfigDict(env_prefix="YAKUZA_SCHEDULER_")

    default_max_retries: int = Field(
        0, ge=0, le=100, description="Retries for tasks that do not set max_retries"
    )
    default_task_timeout: float | None = Field(
        None, gt=0, description="Per-attempt timeout in seconds for tasks without one"
    )
    retry_base_delay: float = Field(
        0.0, ge=0.0, le=600.0, description="Delay before the first retry (seconds)"
    )
    retry_backoff_factor: float = Field(
        2.0, ge=1.0, le=10.0, description="Multiplier applied to each further retry"
    )
    retry_max_delay: float = Field(
        60.0, ge=0.0, le=3600.0, description="Upper bound on a single retry delay"
    )

    @model_validator(mode="after")
    def validate_delays(self) -> "SchedulerSettings":
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        return self


class YakuzaSettings(BaseSettings):
    """Root configuration for a Yakuza registry and its CLI."""

    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    log_level: str = Field(
        "INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        env_prefix="YAKUZA_",
        extra="ignore",
        case_sensitive=False,
        secrets_dir=os.getenv("YAKUZA_SECRETS_DIR"),
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache(maxsize=1)
def get_settings() -> YakuzaSettings:
    """Get the cached process-wide settings instance."""
    return YakuzaSettings()


__all__ = [
    "SchedulerSettings",
    "YakuzaSettings",
    "get_settings",
]
