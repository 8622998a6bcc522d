# packdesk/packs/jobs.py
from __future__ import annotations

import logging
import threading
from typing import Any

from packdesk.app.settings import settings
from packdesk.core.logging import logContext
from packdesk.packs.collaborators import ContentStore, InMemoryJobQueue, QueuedJob
from packdesk.packs.operations import InMemoryOperationRegistry, OperationStatus

logger = logging.getLogger(__name__)

__all__ = ["PACK_JOB_TYPES", "PackJobWorker"]



PACK_JOB_TYPES = frozenset({"pack_apply", "pack_install", "pack_update", "pack_remove"})

# Phase order matters: removals free titles that installs may reuse.
_PHASES: tuple[tuple[str, str], ...] = (
    ("remove", "removes"),
    ("install", "installs"),
    ("update", "updates"),
)



class PackJobWorker:
    """
    Executes queued pack jobs against a content store and drives the
    matching operation records to a terminal status.

    Every job payload looks like:

        {
            "operation_id": "pack_apply_1a2b3c4d",
            "ref_id": "main",
            "user_id": "alice",
            "operations": [
                {"action": "install", "pack_name": "core", "target_version": "1.0.0",
                 "depends_on": [], "pages": [{"name": "Intro", "final_title": "core/Intro"}]},
                {"action": "remove", "pack_name": "legacy", "pack_id": 7},
            ],
        }

    A failing pack does not stop the others. The operation ends as
    `success` only when every pack succeeded.

    `runPending()` drains the queue on the calling thread; `start()` runs
    the same loop on a daemon thread until `stop()`.
    """

    def __init__(
        self,
        *,
        jobQueue: InMemoryJobQueue,
        operations: InMemoryOperationRegistry,
        contentStore: ContentStore,
        pollIntervalSeconds: float | None = None,
    ) -> None:
        self.jobQueue = jobQueue
        self.operations = operations
        self.contentStore = contentStore
        self.pollIntervalSeconds = float(
            pollIntervalSeconds if pollIntervalSeconds is not None else settings("jobs.pollIntervalSeconds", 0.5)
        )
        self._stopEvent = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------ #
    # Loop control
    # ------------------------------------------------------------------ #

    def runPending(self, maxJobs: int | None = None) -> int:
        """Run queued jobs until the queue is empty (or `maxJobs` ran). Returns the count."""
        ran = 0
        while maxJobs is None or ran < maxJobs:
            job = self.jobQueue.get()
            if job is None:
                break
            try:
                self.runJob(job)
            finally:
                self.jobQueue.taskDone()
            ran += 1
        return ran

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopEvent.clear()
        self._thread = threading.Thread(target=self._loop, name="packdesk-job-worker", daemon=True)
        self._thread.start()
        logger.info("Job worker started")

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stopEvent.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Job worker stopped")

    def _loop(self) -> None:
        while not self._stopEvent.is_set():
            job = self.jobQueue.get(timeout=self.pollIntervalSeconds)
            if job is None:
                continue
            try:
                self.runJob(job)
            finally:
                self.jobQueue.taskDone()

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    def runJob(self, job: QueuedJob) -> None:
        payload = job.payload
        operationId = payload.get("operation_id")
        if job.jobType not in PACK_JOB_TYPES:
            logger.error("Job %s has unsupported type %r; dropped", job.jobId, job.jobType)
            return
        if not operationId:
            logger.error("Job %s (%s) has no operation_id; dropped", job.jobId, job.jobType)
            return

        with logContext(operationId=operationId, userId=payload.get("user_id"), refId=payload.get("ref_id")):
            try:
                self._execute(operationId, payload)
            except Exception as err:
                # The record must still reach a terminal status
                logger.exception("Job %s for operation %s crashed", job.jobId, operationId)
                op = self.operations.get(operationId)
                if op is not None and not op.isTerminal:
                    if op.status is OperationStatus.QUEUED:
                        self.operations.start(operationId)
                    self.operations.fail(operationId, f"Job crashed: {err}", {"success": False, "errors": [str(err)]})

    def _execute(self, operationId: str, payload: dict[str, Any]) -> None:
        refId = str(payload.get("ref_id") or "")
        operations: list[dict[str, Any]] = list(payload.get("operations") or [])
        total = len(operations)

        self.operations.start(operationId, f"Applying {total} pack operation(s)")
        progress = 5.0
        self.operations.setProgress(operationId, int(progress))
        step = 90.0 / total if total else 0.0

        results: dict[str, Any] = {
            "success": True,
            "total_operations": total,
            "operations_completed": 0,
            "operations_failed": 0,
            "removes": [],
            "installs": [],
            "updates": [],
            "errors": [],
        }

        for action, bucket in _PHASES:
            for entry in operations:
                if entry.get("action") != action:
                    continue
                name = str(entry.get("pack_name"))
                try:
                    self._runOne(refId, action, entry)
                except Exception as err:
                    logger.warning("Pack %s %s failed: %s", action, name, err)
                    results["operations_failed"] += 1
                    results["errors"].append(f"{action} {name}: {err}")
                    results[bucket].append({"pack_name": name, "success": False, "error": str(err)})
                else:
                    results["operations_completed"] += 1
                    results[bucket].append({"pack_name": name, "success": True})
                progress += step
                self.operations.setProgress(operationId, int(progress), f"Processed {name}")

        if results["operations_failed"]:
            results["success"] = False
            self.operations.fail(
                operationId,
                f"Pack operations finished with {results['operations_failed']} failure(s) out of {total}",
                results,
            )
        else:
            self.operations.complete(
                operationId,
                f"Pack operations complete: {len(results['installs'])} installed, "
                f"{len(results['updates'])} updated, {len(results['removes'])} removed",
                results,
            )

    def _runOne(self, refId: str, action: str, entry: dict[str, Any]) -> None:
        name = str(entry["pack_name"])
        if action == "remove":
            self.contentStore.removePack(refId, name)
            return
        pages = [{"name": str(page["name"]), "final_title": str(page["final_title"])} for page in entry.get("pages") or []]
        dependsOn = list(entry.get("depends_on") or [])
        if action == "install":
            self.contentStore.installPack(refId, name, entry.get("target_version"), pages, dependsOn)
        else:
            self.contentStore.updatePack(refId, name, entry.get("target_version"), pages, dependsOn)
