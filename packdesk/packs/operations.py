# packdesk/packs/operations.py
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, JsonValue
from pydantic.alias_generators import to_snake

from packdesk.core.errors import InvalidArgumentError, InvalidStateError
from packdesk.core.time import nowSeconds

logger = logging.getLogger(__name__)

__all__ = [
    "OperationStatus",
    "OperationType",
    "TERMINAL_STATUSES",
    "Operation",
    "OperationRegistry",
    "InMemoryOperationRegistry",
]



class OperationStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"



class OperationType(str, Enum):
    REPO_ADD = "repo_add"
    REPO_SYNC = "repo_sync"
    REPO_REMOVE = "repo_remove"
    PACK_INSTALL = "pack_install"
    PACK_UPDATE = "pack_update"
    PACK_REMOVE = "pack_remove"
    PACK_APPLY = "pack_apply"



TERMINAL_STATUSES = frozenset({OperationStatus.SUCCESS, OperationStatus.FAILED})

# Allowed status moves. Staying in a non-terminal status is how progress
# and message updates are recorded.
_TRANSITIONS: dict[OperationStatus, frozenset[OperationStatus]] = {
    OperationStatus.QUEUED: frozenset({OperationStatus.QUEUED, OperationStatus.RUNNING}),
    OperationStatus.RUNNING: frozenset({OperationStatus.RUNNING, OperationStatus.SUCCESS, OperationStatus.FAILED}),
    OperationStatus.SUCCESS: frozenset(),
    OperationStatus.FAILED: frozenset(),
}



class Operation(BaseModel):
    """Durable record of one asynchronous pack/repo job."""
    model_config = ConfigDict(
        alias_generator=to_snake,
        populate_by_name=True,
        extra="forbid",
    )

    operationId: str
    type: OperationType
    status: OperationStatus = OperationStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    resultData: JsonValue | None = None
    userId: str
    createdAt: int = Field(default_factory=nowSeconds)
    updatedAt: int = Field(default_factory=nowSeconds)
    startedAt: int | None = None
    completedAt: int | None = None

    @property
    def isTerminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def toDict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)



class OperationRegistry(Protocol):
    def create(self, operationId: str, type: OperationType, userId: str, *, status: OperationStatus = ..., message: str = ...) -> Operation: ...
    def update(self, operationId: str, *, status: OperationStatus | None = ..., message: str | None = ..., progress: int | None = ..., resultData: Any = ...) -> Operation: ...
    def get(self, operationId: str) -> Operation | None: ...



class InMemoryOperationRegistry:
    """
    Thread-safe operation store. Records handed out are copies; the only
    way to change one is through `update` (or its shortcuts), which
    enforces the lifecycle:

        queued -> running -> success | failed

    Terminal records never change again, and a failed record always
    carries a message.
    """

    def __init__(self) -> None:
        self._ops: dict[str, Operation] = {}
        self._lock = threading.Lock()

    def create(
        self,
        operationId: str,
        type: OperationType,
        userId: str,
        *,
        status: OperationStatus = OperationStatus.QUEUED,
        message: str = "",
    ) -> Operation:
        if status is not OperationStatus.QUEUED:
            raise InvalidStateError(f"Operations start as queued, not {status.value}")
        op = Operation(operationId=operationId, type=OperationType(type), userId=userId, status=status, message=message)
        with self._lock:
            if operationId in self._ops:
                raise InvalidArgumentError(f"Operation '{operationId}' already exists")
            self._ops[operationId] = op
        logger.info("Operation %s (%s) created for user %s", operationId, op.type.value, userId)
        return op.model_copy(deep=True)

    def update(
        self,
        operationId: str,
        *,
        status: OperationStatus | None = None,
        message: str | None = None,
        progress: int | None = None,
        resultData: Any = None,
    ) -> Operation:
        with self._lock:
            current = self._ops.get(operationId)
            if current is None:
                raise InvalidArgumentError(f"Operation '{operationId}' not found")

            newStatus = OperationStatus(status) if status is not None else current.status
            if newStatus not in _TRANSITIONS[current.status]:
                raise InvalidStateError(
                    f"Operation '{operationId}' cannot move from {current.status.value} to {newStatus.value}"
                )

            changes: dict[str, Any] = {"status": newStatus, "updatedAt": nowSeconds()}
            if message is not None:
                changes["message"] = message
            if progress is not None:
                changes["progress"] = max(0, min(100, int(progress)))
            if resultData is not None:
                changes["resultData"] = resultData
            if newStatus is OperationStatus.RUNNING and current.startedAt is None:
                changes["startedAt"] = changes["updatedAt"]
            if newStatus in TERMINAL_STATUSES:
                changes["completedAt"] = changes["updatedAt"]
            if newStatus is OperationStatus.SUCCESS:
                changes["progress"] = 100

            if newStatus is OperationStatus.FAILED and not str(changes.get("message", current.message)).strip():
                raise InvalidArgumentError(f"Operation '{operationId}' cannot fail without a message")

            updated = current.model_copy(update=changes, deep=True)
            self._ops[operationId] = updated

        if newStatus is not current.status:
            logger.info("Operation %s: %s -> %s", operationId, current.status.value, newStatus.value)
        return updated.model_copy(deep=True)

    # Lifecycle shortcuts

    def start(self, operationId: str, message: str = "Running") -> Operation:
        return self.update(operationId, status=OperationStatus.RUNNING, message=message)

    def setProgress(self, operationId: str, progress: int, message: str | None = None) -> Operation:
        return self.update(operationId, progress=progress, message=message)

    def complete(self, operationId: str, message: str, resultData: Any = None) -> Operation:
        return self.update(operationId, status=OperationStatus.SUCCESS, message=message, resultData=resultData)

    def fail(self, operationId: str, message: str, resultData: Any = None) -> Operation:
        return self.update(operationId, status=OperationStatus.FAILED, message=message, resultData=resultData)

    # Reads

    def get(self, operationId: str) -> Operation | None:
        with self._lock:
            op = self._ops.get(operationId)
            return op.model_copy(deep=True) if op is not None else None

    def list(self, *, userId: str | None = None, limit: int = 50) -> list[Operation]:
        """Newest first, optionally filtered by user."""
        with self._lock:
            ops = [op for op in self._ops.values() if userId is None or op.userId == userId]
        ops.sort(key=lambda op: (op.createdAt, op.operationId), reverse=True)
        return [op.model_copy(deep=True) for op in ops[:max(0, limit)]]
