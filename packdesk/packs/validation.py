# packdesk/packs/validation.py
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from packdesk.core.errors import DependencyError, VersionCompatibilityError
from packdesk.packs.manifest import Manifest
from packdesk.packs.types import InstalledPack
from packdesk.semver.semver import isMajorChange

logger = logging.getLogger(__name__)

__all__ = [
    "ValidationReport",
    "findUnmetDependencies",
    "findRemovalBlockers",
    "findUpdateBlockers",
    "findMajorVersionChanges",
    "validateBatch",
]



# ------------------------------------------------------------------ #
# Individual checks
# ------------------------------------------------------------------ #

def findUnmetDependencies(
    packNames: Iterable[str],
    manifest: Manifest,
    installed: Iterable[InstalledPack],
    batch: Iterable[str] = (),
    removes: Iterable[str] = (),
) -> dict[str, list[str]]:
    """
    {pack: [missing dependencies]} for every pack whose manifest
    dependencies are neither installed nor part of `batch`.
    `packNames` always counts as part of the batch. Installed packs
    listed in `removes` are gone once the batch runs, so they do not count.
    """
    names = list(packNames)
    available = ({pack.name for pack in installed} - set(removes)) | set(batch) | set(names)
    missing: dict[str, list[str]] = {}
    for name in sorted(names):
        unmet = [dep for dep in manifest.dependenciesOf(name) if dep not in available]
        if unmet:
            missing[name] = sorted(unmet)
    return missing



def _blockers(targets: Iterable[str], installed: Iterable[InstalledPack], exempt: set[str]) -> dict[str, list[str]]:
    targetSet = set(targets)
    blocking: dict[str, list[str]] = {}
    for pack in installed:
        if pack.name in exempt or pack.name in targetSet:
            continue
        for dep in pack.dependsOn:
            if dep in targetSet:
                blocking.setdefault(dep, []).append(pack.name)
    return {name: sorted(set(dependents)) for name, dependents in sorted(blocking.items())}



def findRemovalBlockers(removes: Iterable[str], installed: Iterable[InstalledPack]) -> dict[str, list[str]]:
    """
    {pack: [installed dependents]} for packs that cannot be removed
    because an installed pack outside the removal batch records a
    dependency on them.
    """
    return _blockers(removes, installed, exempt=set())



def findUpdateBlockers(
    updates: Iterable[str],
    installed: Iterable[InstalledPack],
    removes: Iterable[str] = (),
) -> dict[str, list[str]]:
    """
    {pack: [installed dependents]} for packs whose update would leave an
    installed dependent behind. Dependents updated in the same batch, or
    removed in it, do not block.
    """
    return _blockers(updates, installed, exempt=set(removes))



def findMajorVersionChanges(versions: Mapping[str, tuple[str | None, str | None]]) -> dict[str, tuple[str | None, str | None]]:
    """{pack: (current, target)} for every change crossing a major version."""
    return {
        name: (current, target)
        for name, (current, target) in sorted(versions.items())
        if isMajorChange(current, target)
    }



# ------------------------------------------------------------------ #
# Composition
# ------------------------------------------------------------------ #

@dataclass(slots=True, kw_only=True)
class ValidationReport:
    missing: dict[str, list[str]] = field(default_factory=dict)
    removalBlockers: dict[str, list[str]] = field(default_factory=dict)
    updateBlockers: dict[str, list[str]] = field(default_factory=dict)
    majorChanges: dict[str, tuple[str | None, str | None]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not (self.missing or self.removalBlockers or self.updateBlockers or self.majorChanges)

    def raiseForProblems(self) -> None:
        """
        Raise the first problem found, dependency problems before version
        ones. Does nothing when the report is clean.
        """
        if self.missing:
            detail = "; ".join(f"{name} needs {', '.join(deps)}" for name, deps in self.missing.items())
            raise DependencyError(f"Unmet dependencies: {detail}", missing=self.missing)

        if self.removalBlockers or self.updateBlockers:
            parts: list[str] = []
            if self.removalBlockers:
                parts.append("cannot remove " + "; ".join(
                    f"{name} (required by {', '.join(deps)})" for name, deps in self.removalBlockers.items()
                ))
            if self.updateBlockers:
                parts.append("cannot update " + "; ".join(
                    f"{name} (required by {', '.join(deps)})" for name, deps in self.updateBlockers.items()
                ))
            blocking: dict[str, list[str]] = {}
            for source in (self.removalBlockers, self.updateBlockers):
                for name, deps in source.items():
                    blocking[name] = sorted(set(blocking.get(name, [])) | set(deps))
            raise DependencyError("Blocking dependents: " + ", ".join(parts), blocking=blocking)

        if self.majorChanges:
            detail = ", ".join(f"{name} {old} -> {new}" for name, (old, new) in self.majorChanges.items())
            raise VersionCompatibilityError(f"Major version change not allowed: {detail}", changes=self.majorChanges)



def validateBatch(
    manifest: Manifest,
    installed: Iterable[InstalledPack],
    *,
    installs: Iterable[str] = (),
    updates: Mapping[str, tuple[str | None, str | None]] | None = None,
    removes: Iterable[str] = (),
) -> ValidationReport:
    """
    Run every pre-flight check over one batch.

    `updates` maps pack name to (installed version, target version).
    Unmet dependencies are checked for installs and updates alike, since
    a new version may declare new dependencies.
    """
    installedList = list(installed)
    installNames = list(installs)
    updateMap = dict(updates or {})
    removeNames = list(removes)
    batch = set(installNames) | set(updateMap)

    report = ValidationReport(
        missing=findUnmetDependencies([*installNames, *updateMap], manifest, installedList, batch, removeNames),
        removalBlockers=findRemovalBlockers(removeNames, installedList),
        updateBlockers=findUpdateBlockers(updateMap, installedList, removeNames),
        majorChanges=findMajorVersionChanges(updateMap),
    )
    if not report.ok:
        logger.info(
            "Validation failed (missing=%s, removalBlockers=%s, updateBlockers=%s, majorChanges=%s)",
            report.missing, report.removalBlockers, report.updateBlockers, report.majorChanges,
        )
    return report
