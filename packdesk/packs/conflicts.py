# packdesk/packs/conflicts.py
from __future__ import annotations

import logging
from typing import Protocol

from packdesk.packs.state import PackSessionState
from packdesk.packs.types import ConflictType, PackAction

logger = logging.getLogger(__name__)

__all__ = ["TitleExistsCheck", "detectConflicts"]



class TitleExistsCheck(Protocol):
    def exists(self, title: str) -> bool: ...



def detectConflicts(state: PackSessionState, oracle: TitleExistsCheck | None) -> list[str]:
    """
    Flag page-title collisions on packs about to be written.

    Every page's conflict flags are reset first, so the result only ever
    reflects the current selection. Packs that are already installed are
    skipped since their pages would otherwise collide with themselves.
    Titles are checked against the content store (title_exists) and
    against titles seen earlier in the same pass (duplicate_title).

    Never raises. Returns human-readable warnings in pack/page name order.
    """
    for pack in state.packs.values():
        for page in pack.pages.values():
            page.hasConflict = False
            page.conflictType = None

    warnings: list[str] = []
    seen: dict[str, tuple[str, str]] = {}
    for packName in sorted(state.packs):
        pack = state.packs[packName]
        if pack.action not in (PackAction.INSTALL, PackAction.UPDATE) or pack.installed:
            continue
        for pageName in sorted(pack.pages):
            page = pack.pages[pageName]
            title = (page.finalTitle or "").strip()
            if not title:
                continue

            if oracle is not None and oracle.exists(title):
                page.hasConflict = True
                page.conflictType = ConflictType.TITLE_EXISTS
                warnings.append(f"Page '{title}' already exists (pack: {packName}, page: {pageName})")

            if title in seen:
                firstPack, firstPage = seen[title]
                page.hasConflict = True
                # title_exists takes precedence over duplicate_title
                if page.conflictType is None:
                    page.conflictType = ConflictType.DUPLICATE_TITLE
                warnings.append(
                    f"Duplicate title '{title}' (pack: {packName}, page: {pageName}; "
                    f"also used by pack: {firstPack}, page: {firstPage})"
                )
            else:
                seen[title] = (packName, pageName)

    if warnings:
        logger.debug("Conflict detection produced %d warning(s)", len(warnings))
    return warnings
