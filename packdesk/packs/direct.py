# packdesk/packs/direct.py
"""
Single-purpose install/update/remove entry points.

These skip the session entirely: the caller names packs, the same
validation pipeline as `apply` runs over them, and one operation of type
pack_install / pack_update / pack_remove is queued. Pages are written
under their default titles.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from packdesk.core.errors import InvalidArgumentError
from packdesk.core.ids import operationId as newOperationId
from packdesk.core.logging import logContext
from packdesk.packs.manifest import Manifest
from packdesk.packs.operations import OperationStatus, OperationType
from packdesk.packs.service import PackServices
from packdesk.packs.state import createPackState
from packdesk.packs.types import InstalledPack
from packdesk.packs.validation import validateBatch

logger = logging.getLogger(__name__)

__all__ = ["installPacks", "updatePacks", "removePacks"]



def _names(packNames: Iterable[str]) -> list[str]:
    names = list(dict.fromkeys(str(name).strip() for name in packNames if str(name).strip()))
    if not names:
        raise InvalidArgumentError("invalid or missing packs: at least one pack name is required")
    return names



def _pageEntries(manifest: Manifest, name: str, installed: InstalledPack | None) -> list[dict[str, str]]:
    pack = createPackState(name, manifest.packs[name], installed)
    return [{"name": pageName, "final_title": pack.pages[pageName].finalTitle} for pageName in sorted(pack.pages)]



def _queue(
    services: PackServices,
    *,
    opType: OperationType,
    refId: str,
    userId: str,
    operations: list[dict[str, Any]],
    message: str,
) -> dict[str, Any]:
    opId = newOperationId(opType.value)
    services.operations.create(opId, opType, userId, message=message)
    services.jobQueue.enqueue(opType.value, {
        "operation_id": opId,
        "ref_id": refId,
        "user_id": userId,
        "operations": operations,
    })
    logger.info("%s (operation %s)", message, opId)
    services.drainJobsIfInline()
    # Inline runs have already finished by now
    record = services.operations.get(opId)
    return {
        "operation_id": opId,
        "status": (record.status if record is not None else OperationStatus.QUEUED).value,
        "summary": {"total_operations": len(operations), "packs": [op["pack_name"] for op in operations]},
    }



def installPacks(services: PackServices, *, refId: str, userId: str, packNames: Iterable[str]) -> dict[str, Any]:
    names = _names(packNames)
    with logContext(userId=userId, refId=refId, command="install"):
        manifest = services.manifestSource.getManifest(refId)
        installedList = services.installedRegistry.listInstalled(refId)
        installedByName = {pack.name: pack for pack in installedList}

        unknown = [name for name in names if name not in manifest]
        if unknown:
            raise InvalidArgumentError(f"Packs not found in manifest: {', '.join(unknown)}")
        already = [name for name in names if name in installedByName]
        if already:
            raise InvalidArgumentError(f"Packs already installed, cannot install: {', '.join(already)}")

        validateBatch(manifest, installedList, installs=names).raiseForProblems()

        operations = [
            {
                "action": "install",
                "pack_name": name,
                "target_version": manifest.packs[name].version,
                "depends_on": list(manifest.dependenciesOf(name)),
                "pages": _pageEntries(manifest, name, None),
            }
            for name in names
        ]
        return _queue(services, opType=OperationType.PACK_INSTALL, refId=refId, userId=userId,
                      operations=operations, message=f"Pack install queued: {', '.join(names)}")



def updatePacks(services: PackServices, *, refId: str, userId: str, packNames: Iterable[str]) -> dict[str, Any]:
    names = _names(packNames)
    with logContext(userId=userId, refId=refId, command="update"):
        manifest = services.manifestSource.getManifest(refId)
        installedList = services.installedRegistry.listInstalled(refId)
        installedByName = {pack.name: pack for pack in installedList}

        unknown = [name for name in names if name not in manifest]
        if unknown:
            raise InvalidArgumentError(f"Packs not found in manifest: {', '.join(unknown)}")
        missing = [name for name in names if name not in installedByName]
        if missing:
            raise InvalidArgumentError(f"Packs not installed, cannot update: {', '.join(missing)}")

        versions = {name: (installedByName[name].version, manifest.packs[name].version) for name in names}
        validateBatch(manifest, installedList, updates=versions).raiseForProblems()

        operations = [
            {
                "action": "update",
                "pack_name": name,
                "current_version": versions[name][0],
                "target_version": versions[name][1],
                "depends_on": list(manifest.dependenciesOf(name)),
                "pages": _pageEntries(manifest, name, installedByName[name]),
            }
            for name in names
        ]
        return _queue(services, opType=OperationType.PACK_UPDATE, refId=refId, userId=userId,
                      operations=operations, message=f"Pack update queued: {', '.join(names)}")



def removePacks(services: PackServices, *, refId: str, userId: str, packNames: Iterable[str]) -> dict[str, Any]:
    names = _names(packNames)
    with logContext(userId=userId, refId=refId, command="remove"):
        installedList = services.installedRegistry.listInstalled(refId)
        installedByName = {pack.name: pack for pack in installedList}

        missing = [name for name in names if name not in installedByName]
        if missing:
            raise InvalidArgumentError(f"Packs not installed, cannot remove: {', '.join(missing)}")

        manifest = services.manifestSource.getManifest(refId)
        validateBatch(manifest, installedList, removes=names).raiseForProblems()

        operations = [
            {"action": "remove", "pack_name": name, "pack_id": installedByName[name].packId}
            for name in names
        ]
        return _queue(services, opType=OperationType.PACK_REMOVE, refId=refId, userId=userId,
                      operations=operations, message=f"Pack removal queued: {', '.join(names)}")
