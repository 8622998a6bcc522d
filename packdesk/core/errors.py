# packdesk/core/errors.py
from __future__ import annotations

from typing import Any

__all__ = [
    "PackCommandError",
    "InvalidArgumentError",
    "InvalidStateError",
    "StateOutOfSyncError",
    "DependencyError",
    "VersionCompatibilityError",
    "ManifestError",
]



# ------------------------------------------------------------------ #
# Command errors
# ------------------------------------------------------------------ #

class PackCommandError(RuntimeError):
    """
    Base class for every failure a pack command can surface to a caller.

    `code` is a stable machine-readable identifier, `toDict()` gives the
    JSON-ready payload the API layer returns.
    """
    code: str = "pack_command_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def details(self) -> dict[str, Any]:
        return {}

    def toDict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details()}



class InvalidArgumentError(PackCommandError):
    """Malformed, missing or unknown reference in command data."""
    code = "invalid_argument"



class InvalidStateError(PackCommandError):
    """Command issued against an absent session, or illegal lifecycle move."""
    code = "invalid_state"



class StateOutOfSyncError(PackCommandError):
    """
    Client hash does not match the authoritative session.

    Carries everything a client needs to heal itself without a reload:
    the server packs and hash, the per-field differences and an ordered
    queue of reconcile commands.
    """
    code = "state_out_of_sync"

    def __init__(
        self,
        message: str,
        *,
        serverPacks: dict[str, Any],
        serverHash: str,
        differences: dict[str, Any],
        reconcileCommands: list[dict[str, Any]],
    ) -> None:
        super().__init__(message)
        self.serverPacks = serverPacks
        self.serverHash = serverHash
        self.differences = differences
        self.reconcileCommands = reconcileCommands

    def details(self) -> dict[str, Any]:
        return {
            "server_packs": self.serverPacks,
            "server_hash": self.serverHash,
            "differences": self.differences,
            "reconcile_commands": self.reconcileCommands,
        }



class DependencyError(PackCommandError):
    """
    Blocking dependents or unmet dependencies.

    `dependents` is used by deselect (flat list), `blocking` maps a pack to
    the installed packs that prevent its removal/update and `missing` maps a
    pack to dependencies that are neither installed nor in the batch.
    """
    code = "dependency_error"

    def __init__(
        self,
        message: str,
        *,
        dependents: list[str] | None = None,
        missing: dict[str, list[str]] | None = None,
        blocking: dict[str, list[str]] | None = None,
    ) -> None:
        super().__init__(message)
        self.dependents: list[str] = list(dependents or [])
        self.missing: dict[str, list[str]] = dict(missing or {})
        self.blocking: dict[str, list[str]] = dict(blocking or {})

    def details(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.dependents:
            out["dependents"] = self.dependents
        if self.missing:
            out["missing"] = self.missing
        if self.blocking:
            out["blocking"] = self.blocking
        return out



class VersionCompatibilityError(PackCommandError):
    """Raised when an update would cross a major version."""
    code = "version_incompatible"

    def __init__(self, message: str, *, changes: dict[str, tuple[str | None, str | None]] | None = None) -> None:
        super().__init__(message)
        self.changes = dict(changes or {})

    def details(self) -> dict[str, Any]:
        return {"changes": {name: {"from": old, "to": new} for name, (old, new) in self.changes.items()}}



# ------------------------------------------------------------------ #
# Manifest errors
# ------------------------------------------------------------------ #

class ManifestError(ValueError):
    """Manifest could not be loaded or is structurally invalid."""

    def __init__(self, message: str, *, ref: str | None = None) -> None:
        super().__init__(message)
        self.ref = ref
