"""
Recovery loader: rebuilds the record table at startup.

The snapshot is the base state; only WAL entries appended after that
snapshot was taken are replayed on top of it, in log order. An older
snapshot therefore never overrides newer log entries.
"""
import logging

from .models import Record
from .snapshot import SnapshotStore
from .wal import WriteAheadLog

logger = logging.getLogger(__name__)


class RecoveryLoader:
    """
    Runs once, before the node serves any request.

    Corrupted files raise PersistenceCorruptionError out of load(); no
    partial state is ever returned.
    """

    def __init__(self, wal: WriteAheadLog, snapshots: SnapshotStore):
        self.wal = wal
        self.snapshots = snapshots

    async def load(self) -> dict[str, Record]:
        snapshot = await self.snapshots.load()

        base: dict[str, Record] = {}
        after_seq = 0
        if snapshot is not None:
            base = snapshot.records
            after_seq = snapshot.wal_seq

        state = await self.wal.replay(base=base, after_seq=after_seq)

        logger.info(
            f"Recovered {len(state)} keys "
            f"(snapshot: {len(base)} keys at seq {after_seq}, WAL now at seq {self.wal.last_seq})"
        )
        return state
