"""Configuration management using pydantic-settings.

Provides environment-based configuration with type safety and validation.
"""

from .settings import (
    CacheSettings,
    ConcurrencySettings,
    ErrorSettings,
    LoggingSettings,
    ProcessSettings,
    ProcflowSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "CacheSettings",
    "ConcurrencySettings",
    "ErrorSettings",
    "LoggingSettings",
    "ProcessSettings",
    "ProcflowSettings",
    "clear_settings_cache",
    "get_settings",
]
