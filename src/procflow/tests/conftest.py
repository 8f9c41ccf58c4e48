"""Shared fixtures: isolated settings and silent logging per test."""

import os
import sys

import pytest

from procflow.foundation.config import clear_settings_cache
from procflow.runtime.observability import configure_logging


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch: pytest.MonkeyPatch) -> object:
    """Reload settings from a clean environment for each test."""
    for name in [k for k in os.environ if k.startswith("PROCFLOW_")]:
        monkeypatch.delenv(name)
    clear_settings_cache()
    configure_logging(format="none")
    yield
    clear_settings_cache()


@pytest.fixture
def python() -> str:
    """Interpreter used to run child process scripts."""
    return sys.executable
