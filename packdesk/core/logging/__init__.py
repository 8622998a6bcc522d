from .context import setLogContext, clearLogContext, getLogContext, logContext
from .formatters import DevFormatter, JsonFormatter
from .setup import configureLogging

__all__ = [
    "setLogContext", "clearLogContext", "getLogContext", "logContext",
    "DevFormatter", "JsonFormatter",
    "configureLogging",
]
