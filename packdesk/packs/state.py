# packdesk/packs/state.py
from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from packdesk.core.hashing import shortDigest
from packdesk.core.time import nowSeconds
from packdesk.packs.manifest import Manifest, ManifestPack
from packdesk.packs.types import ConflictType, InstalledPack, PackAction

logger = logging.getLogger(__name__)

__all__ = [
    "PACK_FIELDS",
    "PAGE_FIELDS",
    "PageState",
    "PackState",
    "PackSessionState",
    "buildTitle",
    "computeHash",
    "computePacksHash",
    "createPackState",
    "createSessionState",
]



# Wire names of the tracked fields, in canonical order. These are the only
# fields that take part in hashing and diffing.
PACK_FIELDS: tuple[str, ...] = (
    "action",
    "auto_selected_reason",
    "current_version",
    "target_version",
    "prefix",
    "installed",
)
PAGE_FIELDS: tuple[str, ...] = (
    "name",
    "default_title",
    "final_title",
    "has_conflict",
    "conflict_type",
    "installed",
)



def buildTitle(prefix: str, pageName: str) -> str:
    """'Prefix/Page' when a prefix is set, otherwise just the page name."""
    prefix = (prefix or "").strip().strip("/")
    return f"{prefix}/{pageName}" if prefix else pageName



# ------------------------------------------------------------------ #
# Page / pack state
# ------------------------------------------------------------------ #

@dataclass(slots=True, kw_only=True)
class PageState:
    name: str
    defaultTitle: str
    finalTitle: str
    hasConflict: bool = False
    conflictType: ConflictType | None = None
    installed: bool = False

    def toDict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "default_title": self.defaultTitle,
            "final_title": self.finalTitle,
            "has_conflict": self.hasConflict,
            "conflict_type": self.conflictType.value if self.conflictType else None,
            "installed": self.installed,
        }

    @classmethod
    def fromDict(cls, data: Mapping[str, Any], *, name: str | None = None) -> PageState:
        pageName = str(data.get("name") or name or "")
        defaultTitle = str(data.get("default_title") or pageName)
        conflict = data.get("conflict_type")
        return cls(
            name=pageName,
            defaultTitle=defaultTitle,
            finalTitle=str(data.get("final_title") or defaultTitle),
            hasConflict=bool(data.get("has_conflict", False)),
            conflictType=ConflictType(conflict) if conflict else None,
            installed=bool(data.get("installed", False)),
        )



@dataclass(slots=True, kw_only=True)
class PackState:
    action: PackAction = PackAction.UNCHANGED
    autoSelectedReason: str | None = None
    currentVersion: str | None = None
    targetVersion: str | None = None
    prefix: str = ""
    installed: bool = False
    pages: dict[str, PageState] = field(default_factory=dict)

    @property
    def isActioned(self) -> bool:
        return self.action is not PackAction.UNCHANGED

    @property
    def isManual(self) -> bool:
        return self.isActioned and self.autoSelectedReason is None

    @property
    def isAuto(self) -> bool:
        return self.isActioned and self.autoSelectedReason is not None

    def setAction(self, action: PackAction, reason: str | None = None) -> None:
        self.action = action
        # An unchanged pack never keeps a stale reason around
        self.autoSelectedReason = reason if action is not PackAction.UNCHANGED else None

    def toDict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "auto_selected_reason": self.autoSelectedReason,
            "current_version": self.currentVersion,
            "target_version": self.targetVersion,
            "prefix": self.prefix,
            "installed": self.installed,
            "pages": {name: page.toDict() for name, page in self.pages.items()},
        }

    @classmethod
    def fromDict(cls, data: Mapping[str, Any]) -> PackState:
        pages = data.get("pages") or {}
        return cls(
            action=PackAction(data.get("action") or PackAction.UNCHANGED.value),
            autoSelectedReason=data.get("auto_selected_reason"),
            currentVersion=data.get("current_version"),
            targetVersion=data.get("target_version"),
            prefix=str(data.get("prefix") or ""),
            installed=bool(data.get("installed", False)),
            pages={name: PageState.fromDict(page, name=name) for name, page in pages.items()},
        )



# ------------------------------------------------------------------ #
# Hashing
# ------------------------------------------------------------------ #

def _canonicalPacks(packs: Mapping[str, Any]) -> list[Any]:
    """
    Canonical form: packs sorted by name, each as its fixed field set
    followed by its pages sorted by name. Accepts PackState objects or
    their wire dicts so clients and server hash the same way.
    """
    out: list[Any] = []
    for name in sorted(packs):
        pack = packs[name]
        packDict = pack.toDict() if isinstance(pack, PackState) else pack
        fields = {key: packDict.get(key) for key in PACK_FIELDS}
        pages = packDict.get("pages") or {}
        pageList = [{key: pages[pageName].get(key) for key in PAGE_FIELDS} for pageName in sorted(pages)]
        out.append([name, fields, pageList])
    return out



def computePacksHash(packs: Mapping[str, Any]) -> str:
    return shortDigest(_canonicalPacks(packs), 12)



def computeHash(state: PackSessionState) -> str:
    """12-char digest over the tracked fields of every pack and page."""
    return computePacksHash(state.packs)



# ------------------------------------------------------------------ #
# Session state
# ------------------------------------------------------------------ #

@dataclass(slots=True, kw_only=True)
class PackSessionState:
    """
    In-progress pack selection for one (user, ref) pair.

    Only `packs` takes part in the hash. `refId`, `userId` and
    `timestamp` are bookkeeping and do not make two otherwise identical
    selections differ.
    """
    refId: str
    userId: str
    packs: dict[str, PackState] = field(default_factory=dict)
    timestamp: int = field(default_factory=nowSeconds)

    @property
    def hash(self) -> str:
        return computeHash(self)

    def getPack(self, name: str) -> PackState | None:
        return self.packs.get(name)

    def actionedPacks(self) -> dict[str, PackState]:
        return {name: pack for name, pack in sorted(self.packs.items()) if pack.isActioned}

    def touch(self) -> None:
        self.timestamp = nowSeconds()

    def copy(self) -> PackSessionState:
        return PackSessionState(
            refId=self.refId,
            userId=self.userId,
            packs=copy.deepcopy(self.packs),
            timestamp=self.timestamp,
        )

    def packsToDict(self) -> dict[str, Any]:
        return {name: self.packs[name].toDict() for name in sorted(self.packs)}

    def toDict(self) -> dict[str, Any]:
        return {
            "ref_id": self.refId,
            "user_id": self.userId,
            "packs": self.packsToDict(),
            "timestamp": self.timestamp,
            "hash": self.hash,
        }

    @classmethod
    def fromDict(cls, data: Mapping[str, Any]) -> PackSessionState:
        state = cls(
            refId=str(data.get("ref_id") or ""),
            userId=str(data.get("user_id") or ""),
            packs={name: PackState.fromDict(pack) for name, pack in (data.get("packs") or {}).items()},
            timestamp=int(data.get("timestamp") or nowSeconds()),
        )
        stored = data.get("hash")
        if stored and stored != state.hash:
            # Stored hashes are informative only; the live hash is always recomputed
            logger.debug("Session %s/%s stored hash %s differs from recomputed %s", state.userId, state.refId, stored, state.hash)
        return state



# ------------------------------------------------------------------ #
# Construction
# ------------------------------------------------------------------ #

def createPackState(name: str, manifestPack: ManifestPack, installedPack: InstalledPack | None = None) -> PackState:
    """
    Baseline PackState for `name`: nothing selected, versions and page
    titles taken from the installed record when there is one.
    """
    prefix = manifestPack.prefix if manifestPack.prefix is not None else name
    pages: dict[str, PageState] = {}
    for pageName in manifestPack.pages:
        defaultTitle = buildTitle(prefix, pageName)
        installedTitle = installedPack.pageTitle(pageName) if installedPack is not None else None
        pages[pageName] = PageState(
            name=pageName,
            defaultTitle=defaultTitle,
            finalTitle=installedTitle or defaultTitle,
            installed=installedTitle is not None,
        )
    return PackState(
        currentVersion=installedPack.version if installedPack is not None else None,
        targetVersion=manifestPack.version,
        prefix=prefix,
        installed=installedPack is not None,
        pages=pages,
    )



def createSessionState(
    refId: str,
    userId: str,
    manifest: Manifest,
    installedPacks: Iterable[InstalledPack] = (),
) -> PackSessionState:
    installedByName = {pack.name: pack for pack in installedPacks}
    packs = {
        name: createPackState(name, manifest.packs[name], installedByName.get(name))
        for name in sorted(manifest.packs)
    }
    return PackSessionState(refId=refId, userId=userId, packs=packs)
