"""
Caller deadlines expressed as time.monotonic() instants.
"""

import time
from typing import Optional

from ..errors import OperationTimeoutError


def deadline_after(seconds: Optional[float]) -> Optional[float]:
    """Monotonic deadline `seconds` from now, or None for no limit."""
    if seconds is None:
        return None
    return time.monotonic() + seconds


def check_deadline(deadline: Optional[float], operation: str) -> None:
    """Raise OperationTimeoutError once the deadline has passed."""
    if deadline is not None and time.monotonic() >= deadline:
        raise OperationTimeoutError(f"{operation} exceeded its deadline")
