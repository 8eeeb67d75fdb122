"""Runtime settings for ctx-build."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LOCK_STALE_SECONDS = 5 * 60


class BuildSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = Field(default="INFO", validation_alias="CTX_LOG_LEVEL")
    lock_stale_seconds: float = Field(
        default=DEFAULT_LOCK_STALE_SECONDS, validation_alias="CTX_LOCK_STALE_SECONDS"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CTX_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("lock_stale_seconds")
    @classmethod
    def _validate_lock_stale_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("CTX_LOCK_STALE_SECONDS must be > 0")
        return value

    @property
    def lock_stale_ms(self) -> int:
        return int(self.lock_stale_seconds * 1000)


@lru_cache(maxsize=1)
def get_settings() -> BuildSettings:
    """Return cached settings instance."""

    return BuildSettings()


__all__ = ["BuildSettings", "DEFAULT_LOCK_STALE_SECONDS", "get_settings"]
