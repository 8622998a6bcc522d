# packdesk/packs/service.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from packdesk.app.settings import refreshPolicy, settingsBool
from packdesk.core.errors import InvalidArgumentError, InvalidStateError, PackCommandError
from packdesk.core.logging import logContext
from packdesk.packs.collaborators import (
    ContentStore,
    InMemoryContentStore,
    InMemoryInstalledPackRegistry,
    InMemoryJobQueue,
    InMemorySessionStore,
    InMemoryTitleOracle,
    InstalledPackRegistry,
    ManifestSource,
    SessionStore,
    TitleOracle,
)
from packdesk.packs.handlers import HANDLERS, STATELESS_COMMANDS, CommandContext
from packdesk.packs.jobs import PackJobWorker
from packdesk.packs.manifest import Manifest, StaticManifestSource
from packdesk.packs.operations import InMemoryOperationRegistry
from packdesk.packs.sync import diffPacks

logger = logging.getLogger(__name__)

__all__ = ["PackServices", "PackCommandService"]



@dataclass(slots=True, kw_only=True)
class PackServices:
    """The collaborators one PackCommandService talks to."""
    manifestSource: ManifestSource
    installedRegistry: InstalledPackRegistry
    titleOracle: TitleOracle
    sessionStore: SessionStore
    operations: InMemoryOperationRegistry
    jobQueue: InMemoryJobQueue
    contentStore: ContentStore | None = None
    worker: PackJobWorker | None = None

    @classmethod
    def inMemory(
        cls,
        manifests: Mapping[str, Manifest | Mapping[str, Any]] | None = None,
        *,
        existingTitles: tuple[str, ...] = (),
        sessionTtlSeconds: int | None = None,
    ) -> PackServices:
        """Fully wired in-memory stack, job worker included."""
        registry = InMemoryInstalledPackRegistry()
        oracle = InMemoryTitleOracle(existingTitles)
        operations = InMemoryOperationRegistry()
        jobQueue = InMemoryJobQueue()
        contentStore = InMemoryContentStore(registry, oracle)
        worker = PackJobWorker(jobQueue=jobQueue, operations=operations, contentStore=contentStore)
        return cls(
            manifestSource=StaticManifestSource(manifests),
            installedRegistry=registry,
            titleOracle=oracle,
            sessionStore=InMemorySessionStore(sessionTtlSeconds),
            operations=operations,
            jobQueue=jobQueue,
            contentStore=contentStore,
            worker=worker,
        )

    def contextFor(self, userId: str, refId: str, *, manifest: Manifest | None = None) -> CommandContext:
        return CommandContext(
            userId=userId,
            refId=refId,
            manifest=manifest if manifest is not None else self.manifestSource.getManifest(refId),
            installedRegistry=self.installedRegistry,
            titleOracle=self.titleOracle,
            operations=self.operations,
            jobQueue=self.jobQueue,
            refreshPolicy=refreshPolicy(),
        )

    def drainJobsIfInline(self) -> int:
        """Run queued jobs right away when `jobs.runInline` is set."""
        if self.worker is None or not settingsBool("jobs.runInline", False):
            return 0
        return self.worker.runPending()



class PackCommandService:
    """
    Entry point for session commands.

    Loads the (user, ref) session, runs the handler on it and writes the
    outcome back to the session store. Handlers never see the store; a
    failing handler therefore leaves the stored session exactly as it was.

    Responses:

        {
            "ok": True,
            "command": "select_pack",
            "state": {...},             # PackSessionState.toDict()
            "state_hash": "3f9a1c0b7d2e",
            "warnings": [...],
            "diff": {...},              # fields changed by this command
        }

    `apply` adds `operation_id`, `status` and `summary`.
    """

    def __init__(self, services: PackServices) -> None:
        self.services = services

    def dispatch(self, command: str, data: Mapping[str, Any] | None = None, *, userId: str, refId: str) -> dict[str, Any]:
        handler = HANDLERS.get(command)
        if handler is None:
            raise InvalidArgumentError(f"Unknown command '{command}'")
        if not userId or not refId:
            raise InvalidArgumentError("user_id and ref_id are required")

        with logContext(userId=userId, refId=refId, command=command):
            store = self.services.sessionStore
            state = store.load(userId, refId)
            if state is None and command not in STATELESS_COMMANDS:
                logger.info("Command %s rejected: no session", command)
                raise InvalidStateError(f"{command}: no active session, run init first")

            ctx = self.services.contextFor(userId, refId)
            try:
                result = handler(ctx, state, data or {})
            except PackCommandError as err:
                logger.warning("Command %s failed (%s): %s", command, err.code, err.message)
                raise

            if result.clearStored:
                store.clear(userId, refId)
            if result.persist:
                store.save(userId, refId, result.state)

            before = state.packsToDict() if state is not None else {}
            response: dict[str, Any] = {
                "ok": True,
                "command": command,
                "state": result.state.toDict(),
                "state_hash": result.state.hash,
                "warnings": list(result.warnings),
                "diff": diffPacks(before, result.state.packsToDict()),
            }
            if result.operationId is not None:
                self.services.drainJobsIfInline()
                op = self.services.operations.get(result.operationId)
                response["operation_id"] = result.operationId
                response["status"] = op.status.value if op is not None else result.status
                response["summary"] = result.summary

            logger.debug("Command %s ok (hash=%s, warnings=%d)", command, response["state_hash"], len(result.warnings))
            return response

    def getOperation(self, operationId: str) -> dict[str, Any] | None:
        op = self.services.operations.get(operationId)
        return op.toDict() if op is not None else None

    def listOperations(self, *, userId: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        return [op.toDict() for op in self.services.operations.list(userId=userId, limit=limit)]
