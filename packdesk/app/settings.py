# packdesk/app/settings.py
from __future__ import annotations
import json5, os
from pathlib import Path
from typing import Any, cast
from functools import lru_cache

from pydantic import JsonValue

from packdesk.core.dictpath import getByPath

import logging
logger = logging.getLogger(__name__)

__all__ = [
    "SETTINGS", "SETTINGS_ENV_VAR", "userSettingsPath", "loadUserSettings",
    "loadSettings", "deepMerge", "settings", "settingsBool",
    "sessionTtlSeconds", "refreshPolicy",
]



SETTINGS_ENV_VAR = "PACKDESK_SETTINGS"

SETTINGS: JsonValue = {
    "__source": "PACKDESK_DEFAULTS",
    "sessions": {"ttlSeconds": 1800},
    "packs": {
        # "revalidate" re-resolves selections in place, "rebuild" matches init
        "refreshPolicy": "revalidate",
        "manifestTimeoutSeconds": 10,
        "manifestDir": "manifests",
    },
    "jobs": {"runInline": False, "pollIntervalSeconds": 0.5},
    "logging": {"devMode": True, "file": None, "maxBytes": 10 * 1024 * 1024, "backupCount": 5, "levels": {}},
    "http": {"host": "127.0.0.1", "port": 8420, "cors": {"allowOrigins": []}},
}

REFRESH_POLICIES = ("revalidate", "rebuild")



def userSettingsPath() -> Path:
    override = os.environ.get(SETTINGS_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path(os.path.expanduser("~/.packdesk/packdesk.json5"))



def loadUserSettings() -> JsonValue:
    filePath = userSettingsPath()
    if filePath.exists():
        try:
            return json5.loads(filePath.read_text(encoding="utf-8"))
        except Exception as err:
            # Broken user file falls back to defaults, but loudly
            logger.error("Failed to parse '%s': %s", filePath, err)
    return {}



@lru_cache(maxsize=1)
def loadSettings():
    return deepMerge(SETTINGS, loadUserSettings())



def deepMerge(first: JsonValue, second: JsonValue) -> JsonValue:
    """
    Returns a new JsonValue where keys from `second` override/extend `first`.
    Only dict/dict pairs merge recursively; any other right-hand value
    replaces the left one outright.
    """
    if isinstance(first, dict) and isinstance(second, dict):
        out: dict[str, JsonValue] = dict(first)
        for key, value in second.items():
            out[key] = deepMerge(out[key], cast(JsonValue, value)) if key in out else cast(JsonValue, value)
        return cast(JsonValue, out)
    return cast(JsonValue, second)




# ------------------------------------------------------------------ #
# Accessors
# ------------------------------------------------------------------ #

def settings(path: str, default: Any = None) -> Any:
    """Value at dotted `path` in the merged settings; `default` when unset or null."""
    found = getByPath(loadSettings(), path)
    return default if found is None else found



_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off", ""})



def settingsBool(path: str, default: bool = False) -> bool:
    found = getByPath(loadSettings(), path)
    if found is None:
        return default
    if isinstance(found, str):
        lowered = found.strip().lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        logger.warning("Setting %s=%r is not a boolean, using %s", path, found, default)
        return default
    return bool(found)



def sessionTtlSeconds() -> int:
    return int(settings("sessions.ttlSeconds", 1800))



def refreshPolicy() -> str:
    policy = str(settings("packs.refreshPolicy", "revalidate")).strip().lower()
    if policy not in REFRESH_POLICIES:
        logger.warning("Unknown packs.refreshPolicy %r, using 'revalidate'", policy)
        return "revalidate"
    return policy
