import sys

import pytest

from packdesk.app.settings import SETTINGS_ENV_VAR, loadSettings
from packdesk.core.logging import clearLogContext



def pytest_configure(config: pytest.Config) -> None:
    if sys.flags.optimize:
        raise RuntimeError("Assertions are disabled (optimize > 0)")



@pytest.fixture(autouse=True)
def isolatedSettings(monkeypatch, tmp_path):
    """Point settings at an empty location so a developer's own file never leaks in."""
    monkeypatch.setenv(SETTINGS_ENV_VAR, str(tmp_path / "no-settings.json5"))
    loadSettings.cache_clear()
    clearLogContext()
    yield
    loadSettings.cache_clear()
    clearLogContext()
