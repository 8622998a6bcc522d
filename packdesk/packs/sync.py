# packdesk/packs/sync.py
from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import Any

from packdesk.packs.state import PACK_FIELDS, PAGE_FIELDS, PackState

logger = logging.getLogger(__name__)

__all__ = [
    "diffPacks",
    "buildReconcileCommands",
    "applyReconcileCommands",
]

# Pack fields carried by a set_pack_action reconcile entry. The prefix has
# its own command since it also moves page titles.
_ACTION_FIELDS: tuple[str, ...] = tuple(f for f in PACK_FIELDS if f != "prefix")



def _asPackDict(pack: PackState | Mapping[str, Any]) -> dict[str, Any]:
    return pack.toDict() if isinstance(pack, PackState) else dict(pack)



def _asPacksDict(packs: Mapping[str, Any] | None) -> dict[str, dict[str, Any]]:
    return {name: _asPackDict(pack) for name, pack in (packs or {}).items()}



# ------------------------------------------------------------------ #
# Diff
# ------------------------------------------------------------------ #

def diffPacks(old: Mapping[str, Any] | None, new: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Field-level differences from `old` to `new`, holding the *new* values.

    {
        "<pack>": {
            "<pack field>": <new value>,
            "pages": {"<page>": {"<page field>": <new value>}},
        },
    }

    A pack (or page) missing from `old` appears with its full `new`
    record. Packs missing from `new` are not reported.
    """
    oldPacks = _asPacksDict(old)
    newPacks = _asPacksDict(new)

    diff: dict[str, Any] = {}
    for name in sorted(newPacks):
        newPack = newPacks[name]
        oldPack = oldPacks.get(name)
        if oldPack is None:
            diff[name] = newPack
            continue

        packDiff: dict[str, Any] = {
            key: newPack.get(key) for key in PACK_FIELDS
            if oldPack.get(key) != newPack.get(key)
        }

        oldPages = oldPack.get("pages") or {}
        newPages = newPack.get("pages") or {}
        pagesDiff: dict[str, Any] = {}
        for pageName in sorted(newPages):
            newPage = newPages[pageName]
            oldPage = oldPages.get(pageName)
            if oldPage is None:
                pagesDiff[pageName] = dict(newPage)
                continue
            pageDiff = {
                key: newPage.get(key) for key in PAGE_FIELDS
                if oldPage.get(key) != newPage.get(key)
            }
            if pageDiff:
                pagesDiff[pageName] = pageDiff
        if pagesDiff:
            packDiff["pages"] = pagesDiff

        if packDiff:
            diff[name] = packDiff
    return diff



# ------------------------------------------------------------------ #
# Reconcile queue
# ------------------------------------------------------------------ #

def buildReconcileCommands(clientPacks: Mapping[str, Any] | None, serverPacks: Mapping[str, Any]) -> list[dict[str, Any]]:
    """
    Ordered commands that move `clientPacks` onto `serverPacks`.

    Packs are visited by name; for each pack present on both sides the
    queue gets, in this order:
      - set_pack_action when any action/version/installed field differs
      - set_pack_prefix when the prefix differs
      - rename_page for every page that differs (every page when the
        prefix moved), carrying the full server page record
    """
    client = _asPacksDict(clientPacks)
    server = _asPacksDict(serverPacks)

    commands: list[dict[str, Any]] = []
    for name in sorted(server):
        if name not in client:
            continue
        serverPack = server[name]
        clientPack = client[name]

        if any(clientPack.get(key) != serverPack.get(key) for key in _ACTION_FIELDS):
            commands.append({
                "command": "set_pack_action",
                "data": {"pack_name": name, **{key: serverPack.get(key) for key in _ACTION_FIELDS}},
            })

        prefixMoved = clientPack.get("prefix") != serverPack.get("prefix")
        if prefixMoved:
            commands.append({
                "command": "set_pack_prefix",
                "data": {"pack_name": name, "prefix": serverPack.get("prefix")},
            })

        clientPages = clientPack.get("pages") or {}
        serverPages = serverPack.get("pages") or {}
        for pageName in sorted(serverPages):
            serverPage = serverPages[pageName]
            clientPage = clientPages.get(pageName)
            pageDiffers = clientPage is None or any(
                clientPage.get(key) != serverPage.get(key) for key in PAGE_FIELDS
            )
            if prefixMoved or pageDiffers:
                commands.append({
                    "command": "rename_page",
                    "data": {
                        "pack_name": name,
                        "page_name": pageName,
                        "new_title": serverPage.get("final_title"),
                        "page": dict(serverPage),
                    },
                })
    return commands



def applyReconcileCommands(clientPacks: Mapping[str, Any], commands: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """
    Replay a reconcile queue onto plain client packs and return the
    result. The input is left untouched. This is the client half of the
    protocol: replaying the queue it received makes its packs hash like
    the server's.
    """
    packs = copy.deepcopy(_asPacksDict(clientPacks))
    for entry in commands:
        command = entry.get("command")
        data = entry.get("data") or {}
        pack = packs.get(data.get("pack_name"))
        if pack is None:
            logger.debug("Reconcile %s skipped, unknown pack %r", command, data.get("pack_name"))
            continue

        if command == "set_pack_action":
            for key in _ACTION_FIELDS:
                if key in data:
                    pack[key] = data[key]
        elif command == "set_pack_prefix":
            pack["prefix"] = data.get("prefix")
        elif command == "rename_page":
            pages = pack.setdefault("pages", {})
            pageName = data.get("page_name")
            if isinstance(data.get("page"), Mapping):
                pages[pageName] = dict(data["page"])
            elif pageName in pages:
                pages[pageName]["final_title"] = data.get("new_title")
        else:
            raise ValueError(f"Unknown reconcile command {command!r}")
    return packs
