"""procflow configuration, read from PROCFLOW_* environment variables.

Each concern has its own settings class and prefix; the root class nests
them and also reads a local .env file. Values are validated once and cached.

Example:
    >>> from procflow.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.process.stderr_tail_lines
    20

    # Overrides:
    # PROCFLOW_PROCESS_STDERR_TAIL_LINES=50
    # PROCFLOW_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field, PositiveFloat, PositiveInt, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProcessSettings(BaseSettings):
    """Process spawning and stream draining defaults."""

    model_config = SettingsConfigDict(
        env_prefix="PROCFLOW_PROCESS_",
        extra="ignore",
    )

    read_chunk_size: PositiveInt = Field(default=65536, description="Bytes per stdout read")
    stderr_tail_lines: PositiveInt = Field(default=20, description="Stderr lines kept for error reports")
    stderr_tail_bytes: PositiveInt = Field(default=65536, description="Upper bound on captured stderr bytes")


class ConcurrencySettings(BaseSettings):
    """Defaults for concurrent operators and bridges."""

    model_config = SettingsConfigDict(
        env_prefix="PROCFLOW_CONCURRENCY_",
        extra="ignore",
    )

    window: PositiveInt = Field(
        default_factory=lambda: os.cpu_count() or 1,
        description="Default in-flight limit for concurrent maps",
    )
    bridge_maxsize: PositiveInt = Field(default=1, description="Default bridge buffer slots")


class CacheSettings(BaseSettings):
    """Singleflight cache defaults."""

    model_config = SettingsConfigDict(
        env_prefix="PROCFLOW_CACHE_",
        extra="ignore",
    )

    ttl: PositiveFloat | None = Field(default=None, description="Entry lifetime in seconds (None = forever)")
    max_entries: PositiveInt | None = Field(default=None, description="Max completed entries (None = unbounded)")

    @computed_field
    @property
    def bounded(self) -> bool:
        """Whether any eviction policy is active."""
        return self.ttl is not None or self.max_entries is not None


class LoggingSettings(BaseSettings):
    """Renderer and threshold used by configure_logging()."""

    model_config = SettingsConfigDict(
        env_prefix="PROCFLOW_LOG_",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: Literal["console", "json", "none"] = "console"


class ErrorSettings(BaseSettings):
    """Error propagation behavior."""

    model_config = SettingsConfigDict(
        env_prefix="PROCFLOW_ERRORS_",
        extra="ignore",
    )

    chain: bool = Field(default=False, description="Wrap stage failures in StageError with a cause")


class ProcflowSettings(BaseSettings):
    """Root settings for procflow.

    Nested sections can also be set with a double underscore, e.g.
    PROCFLOW_CACHE__TTL. Common variables:
        PROCFLOW_PROCESS_READ_CHUNK_SIZE=16384
        PROCFLOW_CONCURRENCY_WINDOW=8
        PROCFLOW_CACHE_TTL=600
        PROCFLOW_LOG_LEVEL=DEBUG
        PROCFLOW_ERRORS_CHAIN=true
    """

    model_config = SettingsConfigDict(
        env_prefix="PROCFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    process: ProcessSettings = Field(default_factory=ProcessSettings)
    concurrency: ConcurrencySettings = Field(default_factory=ConcurrencySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    errors: ErrorSettings = Field(default_factory=ErrorSettings)


@lru_cache(maxsize=1)
def get_settings() -> ProcflowSettings:
    """Process-wide settings, loaded on first use."""
    return ProcflowSettings()


def clear_settings_cache() -> None:
    """Forget cached settings so the environment is read again."""
    get_settings.cache_clear()
