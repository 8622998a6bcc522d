# packdesk/semver/semver.py
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering

__all__ = [
    "PackVersion",
    "parsePackVersion",
    "tryParsePackVersion",
    "isMajorChange",
    "DEFAULT_PACK_VERSION",
]



DEFAULT_PACK_VERSION = "0.0.0"

_NUMERIC_RE = re.compile(r"0|[1-9]\d*")
_IDENT_RE = re.compile(r"[0-9A-Za-z-]+")



@total_ordering
@dataclass(frozen=True, slots=True)
class PackVersion:
    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        return f"{base}-{'.'.join(self.prerelease)}" if self.prerelease else base

    def _cmpKey(self) -> tuple:
        # A release sorts after any of its prereleases; numeric identifiers
        # sort before alphanumeric ones.
        pre = tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in self.prerelease)
        return (self.major, self.minor, self.patch, 0 if self.prerelease else 1, pre)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, PackVersion):
            return NotImplemented
        return self._cmpKey() < other._cmpKey()



def parsePackVersion(raw: str) -> PackVersion:
    """
    Parse a pack version string.

    Accepted forms:
        "1"  "1.2"  "1.2.3"  "v1.2.3"  "1.2.3-rc.1"  "1.2.3+build.7"

    Missing minor/patch components default to 0. Build metadata is
    accepted and dropped (it never affects ordering or compatibility).
    """
    if not isinstance(raw, str):
        raise TypeError(f"Version must be a string, got {type(raw).__name__}")

    text = raw.strip()
    if not text:
        raise ValueError("Version string cannot be empty or whitespace only")
    if text[0] in "vV" and len(text) > 1 and text[1].isdigit():
        text = text[1:]

    text, plus, build = text.partition("+")
    if plus and not build:
        raise ValueError(f"Empty build metadata in version {raw!r}")
    core, sep, pre = text.partition("-")
    if sep and not pre:
        raise ValueError(f"Empty prerelease in version {raw!r}")

    coreParts = core.split(".")
    if not 1 <= len(coreParts) <= 3 or not all(_NUMERIC_RE.fullmatch(p) for p in coreParts):
        raise ValueError(f"Invalid version core {core!r} in {raw!r}")
    numbers = [int(p) for p in coreParts] + [0] * (3 - len(coreParts))

    prerelease: tuple[str, ...] = ()
    if pre:
        prerelease = tuple(pre.split("."))
        if not all(_IDENT_RE.fullmatch(p) for p in prerelease):
            raise ValueError(f"Invalid prerelease {pre!r} in {raw!r}")

    return PackVersion(major=numbers[0], minor=numbers[1], patch=numbers[2], prerelease=prerelease)



def tryParsePackVersion(raw: str | None) -> PackVersion | None:
    if raw is None:
        return None
    try:
        return parsePackVersion(raw)
    except (TypeError, ValueError):
        return None



def isMajorChange(current: str | None, target: str | None) -> bool:
    """
    True when moving from `current` to `target` crosses a major version.

    Nothing installed (current is None) is never a major change. A version
    that does not parse is treated as incompatible, since nothing can be
    said about what it would break.
    """
    if current is None or target is None:
        return False
    a = tryParsePackVersion(current)
    b = tryParsePackVersion(target)
    if a is None or b is None:
        return current != target
    return a.major != b.major
