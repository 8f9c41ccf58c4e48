"""Foundation layer: errors and configuration."""

from .config import ProcflowSettings, clear_settings_cache, get_settings
from .errors import ErrorCode, ProcessFailure, ProcflowError

__all__ = [
    "ErrorCode",
    "ProcessFailure",
    "ProcflowError",
    "ProcflowSettings",
    "clear_settings_cache",
    "get_settings",
]
