# packdesk/core/hashing.py
from __future__ import annotations

import hashlib
import json
from typing import Any

__all__ = ["canonicalJson", "shortDigest"]



def canonicalJson(value: Any) -> bytes:
    """Key-sorted, whitespace-free UTF-8 JSON. Same content, same bytes."""
    return json.dumps(value, sort_keys=True, ensure_ascii=False, allow_nan=False, separators=(",", ":")).encode("utf-8")



def shortDigest(value: Any, length: int = 12) -> str:
    """Returns the first `length` hex chars of the SHA-256 of canonicalJson(value)."""
    return hashlib.sha256(canonicalJson(value)).hexdigest()[:length]
