import json5
import pytest

from packdesk.app.settings import SETTINGS_ENV_VAR, loadSettings
from packdesk.packs.service import PackCommandService, PackServices



# base <- lib <- app ; docs stands alone
MANIFEST = {
    "packs": {
        "base": {"version": "1.0.0", "pages": ["Intro", "Setup"]},
        "lib": {"version": "1.2.0", "depends_on": ["base"], "pages": ["Guide"]},
        "app": {"version": "2.0.0", "depends_on": ["lib"], "pages": ["Main"], "prefix": "Apps/Demo"},
        "docs": {"version": "0.3.0", "pages": ["Readme"], "prefix": ""},
    }
}

USER = "alice"
REF = "main"



@pytest.fixture()
def services():
    return PackServices.inMemory({REF: MANIFEST})



@pytest.fixture()
def service(services):
    return PackCommandService(services)



@pytest.fixture()
def writeSettings(monkeypatch, tmp_path):
    """Write a json5 settings file and make it the active one."""
    def _write(payload: dict) -> None:
        path = tmp_path / "packdesk.json5"
        path.write_text(json5.dumps(payload), encoding="utf-8")
        monkeypatch.setenv(SETTINGS_ENV_VAR, str(path))
        loadSettings.cache_clear()
    return _write



@pytest.fixture()
def markInstalled(services):
    """Record a pack as installed (pages are (pageName, title) pairs) and register its titles."""
    def _mark(name: str, version: str, *, dependsOn=(), pages=()):
        services.installedRegistry.record(REF, name, version, dependsOn=dependsOn, pages=pages)
        services.titleOracle.add(*(title for _page, title in pages))
    return _mark



@pytest.fixture()
def manifest(services):
    return services.manifestSource.getManifest(REF)



@pytest.fixture()
def ctx(services):
    return services.contextFor(USER, REF)
