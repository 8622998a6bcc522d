# packdesk/core/time.py
from __future__ import annotations

import time

__all__ = ["nowSeconds", "nowMonotonic"]



def nowSeconds() -> int:
    """Wall clock, whole epoch seconds. Used for session and operation stamps."""
    return int(time.time())



def nowMonotonic() -> float:
    """Monotonic seconds for TTL bookkeeping (not affected by clock changes)."""
    return time.monotonic()
