# packdesk/packs/types.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum

__all__ = ["PackAction", "ConflictType", "InstalledPage", "InstalledPack"]



class PackAction(str, Enum):
    UNCHANGED = "unchanged"
    INSTALL = "install"
    UPDATE = "update"
    REMOVE = "remove"



class ConflictType(str, Enum):
    TITLE_EXISTS = "title_exists"       # title already present in the content store
    DUPLICATE_TITLE = "duplicate_title" # title used twice within one selection



@dataclass(frozen=True, slots=True)
class InstalledPage:
    name: str
    finalTitle: str



@dataclass(frozen=True, slots=True, kw_only=True)
class InstalledPack:
    """
    A pack as recorded by the installed-pack registry for one ref.
    `dependsOn` is what was recorded at install time, which may differ
    from what the current manifest declares.
    """
    name: str
    version: str | None
    packId: int | None = None
    dependsOn: tuple[str, ...] = ()
    pages: tuple[InstalledPage, ...] = ()

    def pageTitle(self, pageName: str) -> str | None:
        for page in self.pages:
            if page.name == pageName:
                return page.finalTitle
        return None
