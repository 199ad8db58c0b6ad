"""
Snapshot store: full point-in-time serialization of the record table.

Only one snapshot is kept per node. A new snapshot is written to a
temporary file, fsynced and then renamed over the previous one, so a
crash mid-write leaves the old snapshot intact.

Format (version 1):
    {
      "version": 1,
      "wal_seq": 42,
      "taken_at": 1705612800.5,
      "records": {"user:1": {"value": "alice", "expire_at": null}}
    }
"""
from dataclasses import dataclass, field
from typing import Optional
import asyncio
import json
import logging
import os
import time

import aiofiles
import aiofiles.os

from .errors import PersistenceCorruptionError
from .models import Record

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class Snapshot:
    records: dict[str, Record] = field(default_factory=dict)
    wal_seq: int = 0
    taken_at: float = 0.0


class SnapshotStore:
    """
    Reads and atomically replaces the snapshot document of one node.

    Usage:
        store = SnapshotStore("data/primary.snapshot.json")
        await store.write(records, wal_seq=42)
        snapshot = await store.load()
    """

    def __init__(self, file_path: str):
        self.file_path = file_path
        self.tmp_path = file_path + ".tmp"
        self.lock = asyncio.Lock()

        os.makedirs(os.path.dirname(file_path) or ".", exist_ok=True)

    async def write(self, records: dict[str, Record], wal_seq: int) -> Snapshot:
        """
        Replace the snapshot with the given table.

        Args:
            records: Table to serialize (not mutated)
            wal_seq: Last WAL sequence number reflected in records

        Returns:
            The snapshot that was written
        """
        snapshot = Snapshot(dict(records), wal_seq, time.time())
        document = {
            "version": SNAPSHOT_VERSION,
            "wal_seq": snapshot.wal_seq,
            "taken_at": snapshot.taken_at,
            "records": {
                key: {"value": record.value, "expire_at": record.expire_at}
                for key, record in snapshot.records.items()
            },
        }
        data = json.dumps(document)

        async with self.lock:
            async with aiofiles.open(self.tmp_path, mode='w', encoding='utf-8') as f:
                await f.write(data)
                await f.flush()
                os.fsync(f.fileno())

            await aiofiles.os.replace(self.tmp_path, self.file_path)

        logger.info(f"Snapshot saved: {len(snapshot.records)} keys at WAL seq {wal_seq}")
        return snapshot

    async def load(self) -> Optional[Snapshot]:
        """
        Load the current snapshot.

        Returns:
            The snapshot, or None if none has been written yet

        Raises:
            PersistenceCorruptionError: If the document is unreadable or malformed
        """
        if not os.path.exists(self.file_path):
            logger.info(f"No snapshot at {self.file_path}")
            return None

        async with aiofiles.open(self.file_path, mode='r', encoding='utf-8') as f:
            data = await f.read()

        try:
            document = json.loads(data)
        except json.JSONDecodeError as e:
            raise PersistenceCorruptionError(self.file_path, f"invalid JSON: {e}") from e

        snapshot = self._parse(document)
        logger.info(f"Snapshot loaded: {len(snapshot.records)} keys at WAL seq {snapshot.wal_seq}")
        return snapshot

    def _parse(self, document) -> Snapshot:
        if not isinstance(document, dict):
            raise PersistenceCorruptionError(self.file_path, "snapshot is not an object")

        version = document.get("version")
        if version != SNAPSHOT_VERSION:
            raise PersistenceCorruptionError(self.file_path, f"unsupported version {version!r}")

        wal_seq = document.get("wal_seq")
        if not isinstance(wal_seq, int) or isinstance(wal_seq, bool) or wal_seq < 0:
            raise PersistenceCorruptionError(self.file_path, f"invalid wal_seq {wal_seq!r}")

        raw_records = document.get("records")
        if not isinstance(raw_records, dict):
            raise PersistenceCorruptionError(self.file_path, "missing records")

        records: dict[str, Record] = {}
        for key, raw in raw_records.items():
            if not isinstance(raw, dict) or "value" not in raw:
                raise PersistenceCorruptionError(self.file_path, f"malformed record for key {key!r}")
            expire_at = raw.get("expire_at")
            if expire_at is not None and not isinstance(expire_at, (int, float)):
                raise PersistenceCorruptionError(self.file_path, f"invalid expire_at for key {key!r}")
            records[key] = Record(raw["value"], expire_at)

        return Snapshot(records, wal_seq, document.get("taken_at", 0.0))
