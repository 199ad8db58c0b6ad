"""
Value types shared by the storage engine and its collaborators.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class MutationStatus(str, Enum):
    """Outcome of a mutating call. Soft outcomes, never raised."""
    OK = "OK"
    DELETED = "DELETED"
    NOT_FOUND = "NOT_FOUND"
    LOCKED = "LOCKED"


@dataclass(frozen=True)
class Record:
    """
    A stored value and its absolute expiry.

    expire_at is a unix timestamp in seconds, or None for a record
    that never expires.
    """
    value: Any
    expire_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expire_at is not None and now >= self.expire_at

    def ttl_remaining(self, now: float) -> Optional[float]:
        """Seconds until expiry (never negative), None if permanent."""
        if self.expire_at is None:
            return None
        return max(0.0, self.expire_at - now)
