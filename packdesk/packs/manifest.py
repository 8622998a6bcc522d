# packdesk/packs/manifest.py
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import fastjsonschema
import httpx
import json5

from packdesk.app.settings import settings
from packdesk.core.errors import ManifestError
from packdesk.semver.semver import DEFAULT_PACK_VERSION

logger = logging.getLogger(__name__)

__all__ = [
    "MANIFEST_SCHEMA",
    "ManifestPack",
    "Manifest",
    "parseManifest",
    "loadManifestFile",
    "StaticManifestSource",
    "FileManifestSource",
    "HttpManifestSource",
]



# ------------------------------------------------------------------ #
# Schema
# ------------------------------------------------------------------ #

MANIFEST_SCHEMA: dict[str, Any] = {
    "$id": "packdesk://manifest",
    "type": "object",
    "required": ["packs"],
    "properties": {
        "packs": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "properties": {
                    "version": {"type": ["string", "null"]},
                    "depends_on": {"type": "array", "items": {"type": "string", "minLength": 1}},
                    "pages": {"type": "array", "items": {"type": "string", "minLength": 1}},
                    "prefix": {"type": ["string", "null"]},
                    "description": {"type": "string"},
                },
            },
        },
    },
}

_validateManifest = fastjsonschema.compile(MANIFEST_SCHEMA)



# ------------------------------------------------------------------ #
# Model
# ------------------------------------------------------------------ #

@dataclass(frozen=True, slots=True, kw_only=True)
class ManifestPack:
    name: str
    version: str = DEFAULT_PACK_VERSION
    dependsOn: tuple[str, ...] = ()
    pages: tuple[str, ...] = ()
    # None means "not declared"; the session then falls back to the pack name
    prefix: str | None = None
    description: str = ""



@dataclass(frozen=True, slots=True)
class Manifest:
    """
    Read-only pack catalogue for one ref.

    Dependencies are adjacency by name. Closures are computed lazily and
    memoized on the instance; the manifest never changes after parsing so
    the cache never needs invalidating.
    """
    packs: Mapping[str, ManifestPack]
    ref: str | None = None
    _closureCache: dict[str, frozenset[str]] = field(default_factory=dict, compare=False, repr=False)

    def __contains__(self, name: object) -> bool:
        return name in self.packs

    def get(self, name: str) -> ManifestPack | None:
        return self.packs.get(name)

    def dependenciesOf(self, name: str) -> tuple[str, ...]:
        pack = self.packs.get(name)
        return pack.dependsOn if pack is not None else ()

    def closureOf(self, name: str) -> frozenset[str]:
        """All transitive dependencies of `name` (excluding `name` itself)."""
        cached = self._closureCache.get(name)
        if cached is not None:
            return cached
        seen: set[str] = set()
        stack = list(self.dependenciesOf(name))
        while stack:
            dep = stack.pop()
            if dep in seen:
                continue
            seen.add(dep)
            stack.extend(self.dependenciesOf(dep))
        seen.discard(name)
        result = frozenset(seen)
        self._closureCache[name] = result
        return result

    def toDict(self) -> dict[str, Any]:
        return {
            "packs": {
                pack.name: {
                    "version": pack.version,
                    "depends_on": list(pack.dependsOn),
                    "pages": list(pack.pages),
                    **({"prefix": pack.prefix} if pack.prefix is not None else {}),
                }
                for pack in self.packs.values()
            }
        }



# ------------------------------------------------------------------ #
# Parsing
# ------------------------------------------------------------------ #

def _dedupe(items: list[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(item.strip() for item in items if item.strip()))



def _checkCycles(packs: Mapping[str, ManifestPack], ref: str | None) -> None:
    WHITE, GREY, BLACK = 0, 1, 2
    color = dict.fromkeys(packs, WHITE)

    def visit(name: str, stack: list[str]) -> None:
        color[name] = GREY
        stack.append(name)
        for dep in packs[name].dependsOn:
            if dep not in packs:
                continue
            if color[dep] == GREY:
                cycle = " -> ".join(stack[stack.index(dep):] + [dep])
                msg = f"Detected pack dependency cycle: {cycle}"
                logger.error(msg)
                raise ManifestError(msg, ref=ref)
            if color[dep] == WHITE:
                visit(dep, stack)
        stack.pop()
        color[name] = BLACK

    for name in sorted(packs):
        if color[name] == WHITE:
            visit(name, [])



def parseManifest(raw: Any, *, ref: str | None = None) -> Manifest:
    """
    Build a Manifest from decoded JSON.

    Accepts either the bare document ({"packs": {...}}) or the document
    wrapped as {"manifest": {...}}. Dependencies pointing outside the
    manifest are kept (validation reports them as unmet), cycles are
    rejected.
    """
    if isinstance(raw, Mapping) and "manifest" in raw and "packs" not in raw:
        raw = raw["manifest"]
    try:
        _validateManifest(raw)
    except fastjsonschema.JsonSchemaValueException as err:
        raise ManifestError(f"Invalid manifest: {err.message}", ref=ref) from err

    packs: dict[str, ManifestPack] = {}
    for name, entry in raw["packs"].items():
        name = str(name).strip()
        if not name:
            raise ManifestError("Manifest contains a pack with an empty name", ref=ref)
        dependsOn = _dedupe(entry.get("depends_on") or [])
        if name in dependsOn:
            raise ManifestError(f"Pack '{name}' depends on itself", ref=ref)
        unknown = [dep for dep in dependsOn if dep not in raw["packs"]]
        if unknown:
            logger.warning("Pack '%s' depends on packs missing from manifest: %s", name, ", ".join(unknown))
        packs[name] = ManifestPack(
            name=name,
            version=entry.get("version") or DEFAULT_PACK_VERSION,
            dependsOn=dependsOn,
            pages=_dedupe(entry.get("pages") or []),
            prefix=entry.get("prefix"),
            description=entry.get("description", ""),
        )

    _checkCycles(packs, ref)
    return Manifest(packs=packs, ref=ref)



def loadManifestFile(path: Path, *, ref: str | None = None) -> Manifest:
    if path.suffix == ".json5":
        rawJson = json5.loads(path.read_text(encoding="utf-8"))
    elif path.suffix == ".json":
        rawJson = json.loads(path.read_text(encoding="utf-8"))
    else:
        raise ManifestError(f"Unknown manifest file extension '{path.suffix}'", ref=ref)
    if rawJson is None or not isinstance(rawJson, dict):
        raise ManifestError(f"Manifest file '{path}' is not a JSON object", ref=ref)
    return parseManifest(rawJson, ref=ref)



# ------------------------------------------------------------------ #
# Sources
# ------------------------------------------------------------------ #

class StaticManifestSource:
    """Serves pre-parsed manifests, keyed by ref."""

    def __init__(self, manifests: Mapping[str, Manifest | Mapping[str, Any]] | None = None) -> None:
        self._manifests: dict[str, Manifest] = {}
        for ref, manifest in (manifests or {}).items():
            self.setManifest(ref, manifest)

    def setManifest(self, ref: str, manifest: Manifest | Mapping[str, Any]) -> None:
        self._manifests[ref] = manifest if isinstance(manifest, Manifest) else parseManifest(manifest, ref=ref)

    def getManifest(self, ref: str) -> Manifest:
        try:
            return self._manifests[ref]
        except KeyError:
            raise ManifestError(f"No manifest for ref '{ref}'", ref=ref) from None



class FileManifestSource:
    """
    Reads `<root>/<ref>.json5` (or `.json`). Parsed manifests are cached
    per ref and refreshed when the file's mtime changes.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._cache: dict[str, tuple[float, Manifest]] = {}

    def _pathFor(self, ref: str) -> Path:
        safeRef = ref.replace("/", "__")
        for suffix in (".json5", ".json"):
            candidate = self.root / f"{safeRef}{suffix}"
            if candidate.exists():
                return candidate
        raise ManifestError(f"No manifest file for ref '{ref}' under '{self.root}'", ref=ref)

    def getManifest(self, ref: str) -> Manifest:
        path = self._pathFor(ref)
        mtime = path.stat().st_mtime
        cached = self._cache.get(ref)
        if cached is not None and cached[0] == mtime:
            return cached[1]
        manifest = loadManifestFile(path, ref=ref)
        self._cache[ref] = (mtime, manifest)
        return manifest



class HttpManifestSource:
    """
    Fetches manifests over HTTP. `urlTemplate` receives the ref, e.g.
    "https://packs.example.org/manifests/{ref}.json". The body may be
    JSON or JSON5.
    """

    def __init__(
        self,
        urlTemplate: str,
        *,
        timeoutSeconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.urlTemplate = urlTemplate
        self.timeoutSeconds = float(timeoutSeconds if timeoutSeconds is not None else settings("packs.manifestTimeoutSeconds", 10))
        self._transport = transport

    def getManifest(self, ref: str) -> Manifest:
        url = self.urlTemplate.format(ref=ref)
        try:
            with httpx.Client(timeout=self.timeoutSeconds, transport=self._transport) as client:
                response = client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as err:
            logger.warning("Manifest fetch failed for ref '%s' (%s): %s", ref, url, err)
            raise ManifestError(f"Failed to fetch manifest for ref '{ref}': {err}", ref=ref) from err

        try:
            rawJson = json5.loads(response.text)
        except ValueError as err:
            raise ManifestError(f"Manifest for ref '{ref}' is not valid JSON: {err}", ref=ref) from err
        return parseManifest(rawJson, ref=ref)
