# packdesk/core/logging/formatters.py
from __future__ import annotations

import json
import logging

from .context import getLogContext

__all__ = ["DevFormatter", "JsonFormatter"]

# Context keys shown by the console formatter, in display order.
DEV_CONTEXT_KEYS = ("userId", "refId", "command", "operationId")



class JsonFormatter(logging.Formatter):
    """One-line JSON records for log files."""
    def format(self, record: logging.LogRecord) -> str:
        base = {
            "ts": int(record.created * 1000),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
            "ctx": getLogContext() or {},
            "thread": record.threadName,
        }

        if record.exc_info:
            excType, excValue, _tb = record.exc_info
            base["exc"] = {
                "type": getattr(excType, "__name__", "Error"),
                "message": str(excValue),
                "stack": self.formatException(record.exc_info),
            }

        # default=str keeps odd context values (enums, paths) from breaking a log line
        return json.dumps(base, ensure_ascii=False, separators=(",", ":"), default=str)



class DevFormatter(logging.Formatter):
    """Human-friendly console formatter."""
    def format(self, record: logging.LogRecord) -> str:
        ctx = getLogContext() or {}
        md = [str(ctx[key]) for key in DEV_CONTEXT_KEYS if ctx.get(key)]
        ctxStr = " [" + "/".join(md) + "]" if md else ""

        msg = record.getMessage()
        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)
        if record.stack_info:
            msg += "\n" + str(record.stack_info)
        return f"{record.levelname}: [{record.name}] {msg}{ctxStr}"
