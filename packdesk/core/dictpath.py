# packdesk/core/dictpath.py
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

__all__ = ["splitPath", "getByPath"]



def splitPath(path: str) -> list[str]:
    """
    Splits a dotted settings path. A backslash escapes the next character,
    so "a\\.b.c" addresses key "a.b" then "c".

    Raises ValueError on empty paths, empty segments and dangling escapes.
    """
    if not isinstance(path, str) or not path:
        raise ValueError("Path must be a non-empty string")

    parts: list[str] = []
    buf: list[str] = []
    escaped = False
    for ch in path:
        if escaped:
            buf.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ".":
            parts.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
    if escaped:
        raise ValueError("Path ends with a dangling escape (trailing backslash)")
    parts.append("".join(buf))

    if any(part == "" for part in parts):
        raise ValueError(f"Path '{path}' contains empty segment(s)")
    return parts



def getByPath(obj: Any, path: str, default: Any = None) -> Any:
    """
    Returns the value at `path` inside nested mappings, or `default` when
    any hop is missing or the path itself is invalid.
    """
    try:
        parts = splitPath(path)
    except ValueError:
        return default

    current = obj
    for part in parts:
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current
