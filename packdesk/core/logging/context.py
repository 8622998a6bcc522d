# packdesk/core/logging/context.py
from __future__ import annotations

import contextvars
from collections.abc import Iterator
from contextlib import contextmanager

__all__ = ["setLogContext", "clearLogContext", "getLogContext", "logContext"]

# Per-command log context (userId, refId, command, operationId).
_logContextVar: contextvars.ContextVar[dict[str, object] | None] = contextvars.ContextVar("packdesk.logctx", default=None)



def setLogContext(**kvs) -> None:
    """Merge non-None values into the current context."""
    current = dict(_logContextVar.get() or {})
    current.update({key: value for key, value in kvs.items() if value is not None})
    _logContextVar.set(current)



def clearLogContext() -> None:
    _logContextVar.set(None)



def getLogContext() -> dict[str, object] | None:
    return _logContextVar.get()



@contextmanager
def logContext(**kvs) -> Iterator[None]:
    """
    Scoped variant of setLogContext. The previous context is restored on
    exit, so nested dispatches (e.g. worker running a job inside a request)
    do not leak keys into each other.
    """
    token = _logContextVar.set({**(_logContextVar.get() or {}), **{k: v for k, v in kvs.items() if v is not None}})
    try:
        yield
    finally:
        _logContextVar.reset(token)
