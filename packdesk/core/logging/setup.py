# packdesk/core/logging/setup.py
from __future__ import annotations
import logging
import logging.handlers

from packdesk.app.settings import settings, settingsBool
from .formatters import DevFormatter, JsonFormatter

__all__ = [
    "NO_PROPAGATE",
    "configureLogging",
]



# Third-party loggers kept out of the root handlers
NO_PROPAGATE = [
    "uvicorn", "uvicorn.access", "uvicorn.error",
    "fastapi", "httpcore.connection", "httpcore.http11",
    "httpx",
]

# Quieter defaults, overridable through `logging.levels`
_DEFAULT_LEVELS = {
    "httpx": "WARNING",
    "uvicorn": "INFO",
}



def _levelFor(name: object, fallback: int) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else fallback



def _attach(root: logging.Logger, handler: logging.Handler, formatter: logging.Formatter, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root.addHandler(handler)



def configureLogging() -> logging.Logger:
    """
    Reset the root logger for packdesk and return it.

    Console output always uses DevFormatter. A rotating JSON file is added
    only when `logging.file` is set. `logging.devMode` picks DEBUG over
    INFO for both.
    """
    rootLevel = logging.DEBUG if settingsBool("logging.devMode", True) else logging.INFO

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(rootLevel)

    for name in NO_PROPAGATE:
        logging.getLogger(name).propagate = False

    _attach(root, logging.StreamHandler(), DevFormatter(), rootLevel)

    logFile = settings("logging.file", None)
    if logFile:
        rotating = logging.handlers.RotatingFileHandler(
            str(logFile),
            maxBytes=int(settings("logging.maxBytes", 10 * 1024 * 1024)),
            backupCount=int(settings("logging.backupCount", 5)),
            encoding="utf-8",
        )
        _attach(root, rotating, JsonFormatter(), rootLevel)

    levels = dict(_DEFAULT_LEVELS)
    overrides = settings("logging.levels", {})
    if isinstance(overrides, dict):
        levels.update(overrides)
    for name, level in levels.items():
        logging.getLogger(name).setLevel(_levelFor(level, logging.INFO))

    root.debug("Logging configured (level=%s, file=%s)", logging.getLevelName(rootLevel), logFile or "-")
    return root
