"""
Advisory per-key lock table.

Locks are consulted by the storage engine before every mutation but are
not enforced anywhere else. They live only in memory: nothing here is
written to the WAL, snapshotted or replicated, so a restart clears them.

A lock may carry a lease. Without one the lock is held until unlock()
is called; with one it lapses on its own once the lease runs out, so a
caller that never unlocks cannot block a key forever.
"""
from dataclasses import dataclass
from typing import Callable, Optional
import logging
import time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockEntry:
    key: str
    holder: Optional[str] = None
    expires_at: Optional[float] = None

    def is_held(self, now: float) -> bool:
        return self.expires_at is None or now < self.expires_at


class LockTable:
    """
    In-memory map of held locks.

    Usage:
        locks = LockTable()
        if locks.lock("user:1"):
            ...
            locks.unlock("user:1")
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._entries: dict[str, LockEntry] = {}

    def lock(
        self,
        key: str,
        holder: Optional[str] = None,
        lease_seconds: Optional[float] = None
    ) -> bool:
        """
        Acquire the lock on a key.

        Args:
            key: Key to lock
            holder: Optional identity of the caller, informational only
            lease_seconds: Optional lease length; None means no expiry

        Returns:
            True if the lock was acquired, False if it is already held
        """
        if self.is_locked(key):
            logger.info(f"Key '{key}' is already locked")
            return False

        if lease_seconds is not None and lease_seconds <= 0:
            raise ValueError("lease_seconds must be positive")

        expires_at = None
        if lease_seconds is not None:
            expires_at = self.clock() + lease_seconds

        self._entries[key] = LockEntry(key, holder, expires_at)
        logger.debug(f"LOCK {key} holder={holder} expires_at={expires_at}")
        return True

    def unlock(self, key: str) -> None:
        """Release a lock. Safe to call on a key that is not locked."""
        self._entries.pop(key, None)
        logger.debug(f"UNLOCK {key}")

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False

        if not entry.is_held(self.clock()):
            # Lease ran out
            del self._entries[key]
            logger.info(f"Lock lease on '{key}' expired (holder={entry.holder})")
            return False

        return True

    def get(self, key: str) -> Optional[LockEntry]:
        """Return the live lock entry for a key, if any."""
        if not self.is_locked(key):
            return None
        return self._entries[key]

    def __len__(self) -> int:
        return sum(1 for key in list(self._entries) if self.is_locked(key))
