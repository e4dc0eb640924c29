"""
Configuration management using pydantic-settings.

Loads process-level settings from environment variables (prefixed with
``KVPS_``) and .env files. Backend configuration never comes from here:
each store is configured exclusively through its connection string.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Library settings loaded from environment variables.

    Optional:
        KVPS_LOG_LEVEL: Logging level for the ``kvps`` logger namespace
        KVPS_LOG_FILE: JSON-lines log file; console only when unset
        KVPS_DISCOVER_BACKENDS: Scan bundled modules and entry points for
            backend factories when building the default registry
        KVPS_ENTRY_POINT_GROUP: Entry point group searched for third-party
            backend factories
    """

    model_config = SettingsConfigDict(
        env_prefix="KVPS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON-lines log file")

    DISCOVER_BACKENDS: bool = Field(
        default=True,
        description="Discover bundled and installed backend factories",
    )
    ENTRY_POINT_GROUP: str = Field(
        default="kvps.backends",
        description="Entry point group for third-party backend factories",
    )

    @field_validator("ENTRY_POINT_GROUP")
    @classmethod
    def validate_entry_point_group(cls, v: str) -> str:
        """Entry point groups are dotted names without whitespace."""
        v = v.strip()
        if not v or any(ch.isspace() for ch in v):
            raise ValueError("ENTRY_POINT_GROUP must be a non-empty dotted name")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
