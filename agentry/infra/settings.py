"""Runtime settings for agentry.

Values come from the environment (``AGENTRY_`` prefix) and from a ``.env``
file in the working directory.  The Anthropic key is also read from the
conventional ``ANTHROPIC_API_KEY`` variable.

Usage::

    from agentry.infra.settings import settings

    settings.default_max_iterations  # -> 10
"""

from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}


class AgentrySettings(BaseSettings):
    """Application settings loaded from environment variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="AGENTRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Engine
    default_max_iterations: int = Field(default=10, ge=1)

    # Logging
    log_level: str = "WARNING"
    log_json: bool = False

    # Anthropic backend
    anthropic_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("AGENTRY_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )
    anthropic_base_url: str | None = None
    request_timeout: float = Field(default=60.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"unknown log level {value!r}")
        return level


def get_settings() -> AgentrySettings:
    """Return a freshly loaded settings instance (re-reads the environment)."""
    return AgentrySettings()


settings = AgentrySettings()
