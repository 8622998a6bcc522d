# packdesk/packs/collaborators.py
from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from packdesk.app.settings import sessionTtlSeconds
from packdesk.core.ids import uuidv7
from packdesk.core.time import nowMonotonic
from packdesk.packs.manifest import Manifest
from packdesk.packs.state import PackSessionState
from packdesk.packs.types import InstalledPack, InstalledPage

logger = logging.getLogger(__name__)

__all__ = [
    "ManifestSource",
    "InstalledPackRegistry",
    "TitleOracle",
    "SessionStore",
    "JobQueue",
    "ContentStore",
    "QueuedJob",
    "InMemoryInstalledPackRegistry",
    "InMemoryTitleOracle",
    "InMemorySessionStore",
    "InMemoryJobQueue",
    "InMemoryContentStore",
]



# ------------------------------------------------------------------ #
# Contracts
# ------------------------------------------------------------------ #

class ManifestSource(Protocol):
    def getManifest(self, ref: str) -> Manifest: ...



class InstalledPackRegistry(Protocol):
    def listInstalled(self, ref: str) -> list[InstalledPack]: ...
    def packIdByName(self, ref: str, name: str) -> int | None: ...



class TitleOracle(Protocol):
    def exists(self, title: str) -> bool: ...



class SessionStore(Protocol):
    def load(self, userId: str, refId: str) -> PackSessionState | None: ...
    def save(self, userId: str, refId: str, state: PackSessionState) -> None: ...
    def clear(self, userId: str, refId: str) -> None: ...



class JobQueue(Protocol):
    def enqueue(self, jobType: str, payload: dict[str, Any]) -> str: ...



class ContentStore(Protocol):
    """Writes pack pages into the target store. Raises on failure."""
    def installPack(self, ref: str, name: str, version: str | None, pages: list[dict[str, str]], dependsOn: Iterable[str] = ()) -> None: ...
    def updatePack(self, ref: str, name: str, version: str | None, pages: list[dict[str, str]], dependsOn: Iterable[str] = ()) -> None: ...
    def removePack(self, ref: str, name: str) -> None: ...



# ------------------------------------------------------------------ #
# In-memory implementations
# ------------------------------------------------------------------ #

class InMemoryInstalledPackRegistry:
    """Installed packs per ref. Pack ids are assigned on first install."""

    def __init__(self) -> None:
        self._packs: dict[str, dict[str, InstalledPack]] = {}
        self._nextId = 1
        self._lock = threading.Lock()

    def listInstalled(self, ref: str) -> list[InstalledPack]:
        with self._lock:
            return [pack for _name, pack in sorted(self._packs.get(ref, {}).items())]

    def getInstalled(self, ref: str, name: str) -> InstalledPack | None:
        with self._lock:
            return self._packs.get(ref, {}).get(name)

    def packIdByName(self, ref: str, name: str) -> int | None:
        pack = self.getInstalled(ref, name)
        return pack.packId if pack is not None else None

    def record(
        self,
        ref: str,
        name: str,
        version: str | None,
        *,
        dependsOn: Iterable[str] = (),
        pages: Iterable[tuple[str, str]] = (),
    ) -> InstalledPack:
        """Insert or replace the record for `name`, keeping its id."""
        with self._lock:
            refPacks = self._packs.setdefault(ref, {})
            existing = refPacks.get(name)
            packId = existing.packId if existing is not None else None
            if packId is None:
                packId = self._nextId
                self._nextId += 1
            pack = InstalledPack(
                name=name,
                version=version,
                packId=packId,
                dependsOn=tuple(dependsOn),
                pages=tuple(InstalledPage(pageName, title) for pageName, title in pages),
            )
            refPacks[name] = pack
            return pack

    def forget(self, ref: str, name: str) -> InstalledPack | None:
        with self._lock:
            return self._packs.get(ref, {}).pop(name, None)



class InMemoryTitleOracle:
    def __init__(self, titles: Iterable[str] = ()) -> None:
        self._titles: set[str] = set(titles)
        self._lock = threading.Lock()

    def exists(self, title: str) -> bool:
        with self._lock:
            return title in self._titles

    def add(self, *titles: str) -> None:
        with self._lock:
            self._titles.update(titles)

    def discard(self, *titles: str) -> None:
        with self._lock:
            self._titles.difference_update(titles)



class InMemorySessionStore:
    """
    (user, ref) -> serialized session, expiring `ttlSeconds` after the
    last save. States are stored as plain dicts so a loaded state never
    aliases the caller's object.
    """

    def __init__(self, ttlSeconds: int | None = None, *, clock=nowMonotonic) -> None:
        self.ttlSeconds = int(ttlSeconds if ttlSeconds is not None else sessionTtlSeconds())
        self._clock = clock
        self._items: dict[tuple[str, str], tuple[float, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def load(self, userId: str, refId: str) -> PackSessionState | None:
        key = (userId, refId)
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            expiresAt, data = item
            if self._clock() >= expiresAt:
                del self._items[key]
                logger.debug("Session %s/%s expired", userId, refId)
                return None
        return PackSessionState.fromDict(data)

    def save(self, userId: str, refId: str, state: PackSessionState) -> None:
        with self._lock:
            self._items[(userId, refId)] = (self._clock() + self.ttlSeconds, state.toDict())

    def clear(self, userId: str, refId: str) -> None:
        with self._lock:
            self._items.pop((userId, refId), None)



@dataclass(frozen=True, slots=True, kw_only=True)
class QueuedJob:
    jobId: str
    jobType: str
    payload: dict[str, Any] = field(default_factory=dict)



class InMemoryJobQueue:
    """FIFO of QueuedJob. Producers never block; consumers poll with `get`."""

    def __init__(self) -> None:
        self._queue: queue.Queue[QueuedJob] = queue.Queue()

    def enqueue(self, jobType: str, payload: dict[str, Any]) -> str:
        job = QueuedJob(jobId=uuidv7(prefix="job_"), jobType=jobType, payload=dict(payload))
        self._queue.put(job)
        logger.debug("Enqueued %s job %s", jobType, job.jobId)
        return job.jobId

    def get(self, timeout: float | None = None) -> QueuedJob | None:
        try:
            return self._queue.get(timeout=timeout) if timeout else self._queue.get_nowait()
        except queue.Empty:
            return None

    def taskDone(self) -> None:
        self._queue.task_done()

    def pending(self) -> int:
        return self._queue.qsize()



class InMemoryContentStore:
    """
    Content store that keeps the installed registry and the title oracle
    in step with what it writes.
    """

    def __init__(self, registry: InMemoryInstalledPackRegistry, oracle: InMemoryTitleOracle) -> None:
        self.registry = registry
        self.oracle = oracle

    def installPack(self, ref: str, name: str, version: str | None, pages: list[dict[str, str]], dependsOn: Iterable[str] = ()) -> None:
        if self.registry.getInstalled(ref, name) is not None:
            raise RuntimeError(f"Pack '{name}' is already installed")
        self._write(ref, name, version, pages, dependsOn)

    def updatePack(self, ref: str, name: str, version: str | None, pages: list[dict[str, str]], dependsOn: Iterable[str] = ()) -> None:
        previous = self.registry.getInstalled(ref, name)
        if previous is None:
            raise RuntimeError(f"Pack '{name}' is not installed")
        self.oracle.discard(*(page.finalTitle for page in previous.pages))
        self._write(ref, name, version, pages, dependsOn)

    def removePack(self, ref: str, name: str) -> None:
        previous = self.registry.forget(ref, name)
        if previous is None:
            raise RuntimeError(f"Pack '{name}' is not installed")
        self.oracle.discard(*(page.finalTitle for page in previous.pages))

    def _write(self, ref: str, name: str, version: str | None, pages: list[dict[str, str]], dependsOn: Iterable[str]) -> None:
        titles = [(page["name"], page["final_title"]) for page in pages]
        self.registry.record(ref, name, version, dependsOn=dependsOn, pages=titles)
        self.oracle.add(*(title for _pageName, title in titles))
