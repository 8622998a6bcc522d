# packdesk/core/ids.py
from __future__ import annotations

import uuid6

__all__ = ["uuidv7", "shortId", "operationId"]



def uuidv7(*, prefix: str = "") -> str:
    """Returns a UUIDv7 string (time-ordered), optionally prefixed."""
    return prefix + str(uuid6.uuid7())



def shortId(length: int = 8, prefix: str = "") -> str:
    """
    Returns `length` hex chars taken from the random tail of a UUIDv7.
    The leading 48 bits of a UUIDv7 are the timestamp, so short ids are
    cut from the end instead.
    """
    if not isinstance(prefix, str):
        raise TypeError("prefix must be a str")
    if not 1 <= length <= 20:
        raise ValueError("length must be between 1 and 20")
    return f"{prefix}{uuid6.uuid7().hex[-length:]}"



def operationId(operationType: str) -> str:
    """Operation ids look like 'pack_apply_1a2b3c4d'."""
    return shortId(8, prefix=f"{operationType}_")
