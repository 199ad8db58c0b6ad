"""
Storage Engine for in-memory key-value storage with TTLs, advisory locks,
WAL + snapshot persistence and best-effort replication.

The StorageEngine owns the record table and every background task that
touches it (expiration sweeper, snapshot timer, replication workers).
Background tasks only run between start() and stop(), so tests can drive
sweeps and snapshots by hand.

A mutation checks the lock table, appends to the WAL, updates the in-memory
table (both under the engine lock) and finally enqueues a replication
notification.
"""
from typing import Any, Callable, Optional
import asyncio
import logging
import os
import time

from kvnode.cluster.replication import ReplicationPublisher
from .locks import LockTable
from .models import MutationStatus, Record
from .recovery import RecoveryLoader
from .scheduler import PeriodicTask
from .snapshot import Snapshot, SnapshotStore
from .sweeper import ExpirationSweeper
from .wal import DEL, SET, WriteAheadLog

logger = logging.getLogger(__name__)


class StorageEngine:
    """
    Single-node key-value store.

    Usage:
        engine = StorageEngine("data", node_id="primary")
        await engine.initialize()
        await engine.start()

        await engine.set("key", "value", ttl=30)
        value = await engine.get("key")
        await engine.delete("key")

        await engine.close()

    "Locked" and "not found" are returned as MutationStatus values, never
    raised. Only corrupted persisted state (PersistenceCorruptionError
    from initialize()) is fatal.
    """

    def __init__(
        self,
        data_dir: str,
        node_id: str = "node",
        *,
        publisher: Optional[ReplicationPublisher] = None,
        sweep_interval: float = 10.0,
        snapshot_interval: float = 60.0,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize storage engine.

        Args:
            data_dir: Directory for the WAL and snapshot files
            node_id: Prefix for this node's file names
            publisher: Replication publisher; a peerless one is created if omitted
            sweep_interval: Seconds between expiration sweeps
            snapshot_interval: Seconds between snapshots
            clock: Source of the current unix time in seconds

        No state is loaded here; call initialize() before serving.
        """
        self.node_id = node_id
        self.clock = clock
        self.wal = WriteAheadLog(os.path.join(data_dir, f"{node_id}.wal"), clock)
        self.snapshots = SnapshotStore(os.path.join(data_dir, f"{node_id}.snapshot.json"))
        self.locks = LockTable(clock)
        self.publisher = publisher if publisher is not None else ReplicationPublisher()
        self.sweeper = ExpirationSweeper(self, sweep_interval)
        self.snapshot_timer = PeriodicTask("snapshot-timer", self.snapshot, snapshot_interval)

        self._mutex = asyncio.Lock()
        self.records: dict[str, Record] = {}
        self._initialized = False
        self._closed = False

        logger.info(f"Initializing storage engine '{node_id}' in {data_dir}")

    async def initialize(self) -> None:
        """
        Restore state from the snapshot and the WAL.

        Must be called once before serving requests, typically in the
        FastAPI lifespan. PersistenceCorruptionError propagates.
        """
        if self._initialized:
            return

        logger.info("Recovering state from snapshot and WAL...")
        self.records = await RecoveryLoader(self.wal, self.snapshots).load()
        self._initialized = True
        logger.info(f"Storage engine initialized with {len(self.records)} keys")

    async def start(self) -> None:
        """Start the sweeper, the snapshot timer and the replication workers."""
        self.sweeper.start()
        self.snapshot_timer.start()
        self.publisher.start()

    async def stop(self) -> None:
        await self.sweeper.stop()
        await self.snapshot_timer.stop()
        await self.publisher.stop()

    # Reads

    async def get(self, key: str) -> Optional[Any]:
        """
        Retrieve value for a key.

        Returns:
            The value if the key exists and has not expired, None otherwise
        """
        record = await self.get_with_expiry(key)
        return record.value if record is not None else None

    async def get_with_expiry(self, key: str) -> Optional[Record]:
        """
        Retrieve the record (value and expiry) for a key.

        An expired record is removed through expire() before None is
        returned.
        """
        record = self.records.get(key)
        if record is None:
            return None

        if record.is_expired(self.clock()):
            await self.expire(key)
            return None

        return record

    async def items(self) -> list[tuple[str, Record]]:
        """All live records. Expired records are skipped, not removed."""
        now = self.clock()
        return [
            (key, record) for key, record in list(self.records.items())
            if not record.is_expired(now)
        ]

    async def exists(self, key: str) -> bool:
        return await self.get_with_expiry(key) is not None

    async def size(self) -> int:
        """Number of live records."""
        return len(await self.items())

    # Mutations

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        *,
        replicate: bool = True
    ) -> MutationStatus:
        """
        Store a value, optionally expiring after ttl seconds.

        Args:
            key: The key to store
            value: The value to store (any JSON-serializable payload)
            ttl: Seconds until expiry; None stores a permanent record.
                A ttl <= 0 stores a record that is already expired.
            replicate: Forward the mutation to peers

        Returns:
            MutationStatus.OK, or MutationStatus.LOCKED if the key is locked
        """
        async with self._mutex:
            if self.locks.is_locked(key):
                logger.warning(f"Key '{key}' is locked for modification")
                return MutationStatus.LOCKED

            expire_at = self.clock() + ttl if ttl is not None else None
            await self.wal.append(SET, key, value, expire_at)
            self.records[key] = Record(value, expire_at)

        logger.debug(f"SET {key} expire_at={expire_at}")
        if replicate:
            self.publisher.publish(SET, key, value, ttl)
        return MutationStatus.OK

    async def delete(self, key: str, *, replicate: bool = True) -> MutationStatus:
        """
        Delete a key. Idempotent.

        Returns:
            DELETED if a record was removed, NOT_FOUND if there was none,
            LOCKED if the key is locked
        """
        return await self._remove(key, expired_only=False, replicate=replicate)

    async def expire(self, key: str) -> MutationStatus:
        """
        Delete a key only if its record is expired right now.

        Shared by lazy expiry and the sweeper. Whichever path gets here
        first removes the record; the other finds nothing and is a no-op.
        """
        return await self._remove(key, expired_only=True, replicate=True)

    async def _remove(self, key: str, expired_only: bool, replicate: bool) -> MutationStatus:
        async with self._mutex:
            if self.locks.is_locked(key):
                logger.warning(f"Key '{key}' is locked for deletion")
                return MutationStatus.LOCKED

            record = self.records.get(key)
            if record is None:
                return MutationStatus.NOT_FOUND
            if expired_only and not record.is_expired(self.clock()):
                return MutationStatus.NOT_FOUND

            await self.wal.append(DEL, key)
            del self.records[key]

        logger.debug(f"DEL {key}{' (expired)' if expired_only else ''}")
        if replicate:
            self.publisher.publish(DEL, key)
        return MutationStatus.DELETED

    async def delete_matching(self, pattern: str) -> list[str]:
        """
        Delete every live key containing pattern as a substring.

        Returns:
            The keys that were actually deleted (locked keys are skipped)
        """
        if not pattern:
            raise ValueError("pattern must not be empty")

        matches = [key for key, _ in await self.items() if pattern in key]
        deleted = []
        for key in matches:
            if await self.delete(key) == MutationStatus.DELETED:
                deleted.append(key)

        logger.info(f"Pattern delete '{pattern}' removed {len(deleted)} of {len(matches)} matching keys")
        return deleted

    # Locks

    def lock(self, key: str, holder: Optional[str] = None, lease_seconds: Optional[float] = None) -> bool:
        return self.locks.lock(key, holder, lease_seconds)

    def unlock(self, key: str) -> None:
        self.locks.unlock(key)

    def is_locked(self, key: str) -> bool:
        return self.locks.is_locked(key)

    # Replication

    def add_node(self, address: str) -> None:
        self.publisher.add_node(address)

    @property
    def nodes(self) -> list[str]:
        return self.publisher.nodes

    # Background work

    async def snapshot(self) -> Snapshot:
        """Write a snapshot of the current table."""
        async with self._mutex:
            records = dict(self.records)
            wal_seq = self.wal.last_seq
        return await self.snapshots.write(records, wal_seq)

    async def sweep(self) -> int:
        """Run one expiration sweep now."""
        return await self.sweeper.sweep()

    async def close(self) -> None:
        """
        Stop background tasks and close the WAL.

        Should be called during application shutdown.
        """
        if self._closed:
            return

        await self.stop()
        async with self._mutex:
            await self.wal.close()
            self._closed = True

        logger.info("Storage engine closed")
