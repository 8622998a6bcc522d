# packdesk/packs/resolver.py
from __future__ import annotations

import logging

from packdesk.packs.manifest import Manifest
from packdesk.packs.state import PackSessionState, PackState
from packdesk.packs.types import PackAction

logger = logging.getLogger(__name__)

__all__ = [
    "requiredAction",
    "propagate",
    "findDependents",
    "pruneUnneededAutoActions",
    "resolveSelections",
]

# Actions that pull dependencies in. A removal never needs its dependencies.
_PULLING_ACTIONS = (PackAction.INSTALL, PackAction.UPDATE)



def requiredAction(pack: PackState) -> PackAction:
    """
    What it takes to have `pack` present at its target version:
    install when absent, update when versions differ, nothing otherwise.
    """
    if pack.currentVersion is None:
        return PackAction.INSTALL
    if pack.currentVersion != pack.targetVersion:
        return PackAction.UPDATE
    return PackAction.UNCHANGED



def propagate(
    state: PackSessionState,
    manifest: Manifest,
    packName: str,
    action: PackAction | None = None,
) -> list[str]:
    """
    Auto-select the dependency closure of `packName` in place.

    A dependency is touched only when it is unchanged or already
    auto-actioned; manual choices are never overridden. Each pack is
    visited once per call, so diamonds do not re-walk shared subtrees.

    Returns the names of packs whose action was set, in visit order.
    """
    if action is None:
        pack = state.packs.get(packName)
        action = pack.action if pack is not None else PackAction.UNCHANGED
    if action not in _PULLING_ACTIONS:
        return []

    changed: list[str] = []
    visited: set[str] = {packName}

    def visit(name: str) -> None:
        for dep in manifest.dependenciesOf(name):
            if dep in visited:
                continue
            visited.add(dep)
            depState = state.packs.get(dep)
            if depState is None:
                logger.warning("Pack '%s' requires '%s' which is not part of the session", name, dep)
                continue
            if depState.isManual:
                continue
            depAction = requiredAction(depState)
            if depAction is PackAction.UNCHANGED:
                continue
            depState.setAction(depAction, f"Required by {name}")
            changed.append(dep)
            visit(dep)

    visit(packName)
    if changed:
        logger.debug("Propagated '%s' to: %s", packName, ", ".join(changed))
    return changed



def findDependents(state: PackSessionState, manifest: Manifest, packName: str) -> list[str]:
    """
    Actioned packs that declare `packName` in depends_on, sorted by name.
    Packs being removed do not count; they no longer need anything.
    """
    return sorted(
        name for name, pack in state.packs.items()
        if pack.isActioned
        and pack.action is not PackAction.REMOVE
        and packName in manifest.dependenciesOf(name)
    )



def pruneUnneededAutoActions(state: PackSessionState, manifest: Manifest) -> list[str]:
    """
    Reset auto-selected packs that no manual install/update still needs.
    Returns the names that were reset.
    """
    needed: set[str] = set()
    for name, pack in state.packs.items():
        if pack.isManual and pack.action in _PULLING_ACTIONS:
            needed.update(manifest.closureOf(name))

    pruned: list[str] = []
    for name in sorted(state.packs):
        pack = state.packs[name]
        if pack.isAuto and name not in needed:
            pack.setAction(PackAction.UNCHANGED)
            pruned.append(name)
    if pruned:
        logger.debug("Pruned stale auto-selections: %s", ", ".join(pruned))
    return pruned



def resolveSelections(state: PackSessionState, manifest: Manifest) -> list[str]:
    """
    Bring every auto-selection back in line with the manual ones: prune
    what is no longer needed, then re-derive the rest by propagating
    manual packs by name.

    The result depends only on the manual selections, so undoing a
    command restores the earlier state exactly (reasons included).
    Returns all packs touched (pruned first, then propagated).
    """
    touched = pruneUnneededAutoActions(state, manifest)
    for pack in state.packs.values():
        if pack.isAuto:
            pack.setAction(PackAction.UNCHANGED)
    for name in sorted(state.packs):
        pack = state.packs[name]
        if pack.isManual:
            touched.extend(propagate(state, manifest, name, pack.action))
    return touched
