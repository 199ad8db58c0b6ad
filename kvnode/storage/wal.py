"""
Write-Ahead Log (WAL) implementation for crash recovery.

Every accepted mutation is appended to the log. On restart the log is
replayed on top of the latest snapshot to restore state.

Format: JSON-lines (one operation per line). JSON string escaping keeps
keys and values containing spaces or newlines unambiguous.
Example:
    {"seq":1,"op":"SET","key":"user 1","value":"alice","expire_at":null,"ts":1705612800}
    {"seq":2,"op":"DEL","key":"user 1","ts":1705612802}

seq increases strictly across the whole file, including across
restarts. Snapshots record the last seq they cover so recovery only
replays what came after.
"""
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional
import asyncio
import json
import logging
import os
import time

import aiofiles

from .errors import PersistenceCorruptionError
from .models import Record

logger = logging.getLogger(__name__)

SET = "SET"
DEL = "DEL"
OPERATIONS = (SET, DEL)


@dataclass(frozen=True)
class WalEntry:
    """One immutable log record."""
    seq: int
    op: str
    key: str
    value: Any = None
    expire_at: Optional[float] = None

    def to_json(self, ts: float) -> str:
        entry = {"seq": self.seq, "op": self.op, "key": self.key}
        if self.op == SET:
            entry["value"] = self.value
            entry["expire_at"] = self.expire_at
        entry["ts"] = int(ts)
        return json.dumps(entry)


def apply_entries(state: dict[str, Record], entries: Iterable[WalEntry]) -> dict[str, Record]:
    """
    Apply log entries in order onto state (mutated in place).

    SET is last-writer-wins per key, DEL removes unconditionally. Applying
    the same sequence again yields the same table.
    """
    for entry in entries:
        if entry.op == SET:
            state[entry.key] = Record(entry.value, entry.expire_at)
        else:
            state.pop(entry.key, None)
    return state


class WriteAheadLog:
    """
    Append-only log for recording storage mutations.

    Each accepted mutation (SET/DEL) is appended here by the storage
    engine. replay() reconstructs the table from the log.
    """

    def __init__(self, file_path: str, clock: Callable[[], float] = time.time):
        """
        Initialize WAL at the specified path.

        Args:
            file_path: Path to the WAL file (e.g., "data/primary.wal")
            clock: Source of the entry timestamps
        """
        self.file_path = file_path
        self.clock = clock
        self.lock = asyncio.Lock()
        self.last_seq = 0

        os.makedirs(os.path.dirname(file_path) or ".", exist_ok=True)

        if not os.path.exists(file_path):
            with open(file_path, 'w'):
                pass
            logger.info(f"Created new WAL file: {file_path}")
        else:
            logger.info(f"Using existing WAL file: {file_path}")

    async def append(
        self,
        operation: str,
        key: str,
        value: Any = None,
        expire_at: Optional[float] = None
    ) -> WalEntry:
        """
        Append an operation to the log.

        Args:
            operation: "SET" or "DEL"
            key: The key being modified
            value: The value (SET only)
            expire_at: Absolute expiry timestamp (SET only), None = never

        Returns:
            The entry as written, with its sequence number
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown WAL operation: {operation}")

        async with self.lock:
            entry = WalEntry(self.last_seq + 1, operation, key, value, expire_at)
            line = entry.to_json(self.clock()) + "\n"

            async with aiofiles.open(self.file_path, mode='a', encoding='utf-8') as f:
                await f.write(line)
                await f.flush()

            self.last_seq = entry.seq
            logger.debug(f"WAL: #{entry.seq} {operation} key={key}")
            return entry

    async def read_entries(self) -> list[WalEntry]:
        """
        Parse every entry in the log.

        Raises:
            PersistenceCorruptionError: On any unparseable or invalid line.
                No partial result is returned.
        """
        entries: list[WalEntry] = []
        line_number = 0
        previous_seq = 0

        async with aiofiles.open(self.file_path, mode='r', encoding='utf-8') as f:
            async for line in f:
                line_number += 1
                line = line.strip()

                if not line:
                    continue

                entry = self._parse_line(line, line_number)
                if entry.seq <= previous_seq:
                    raise PersistenceCorruptionError(
                        self.file_path,
                        f"sequence {entry.seq} does not follow {previous_seq}",
                        line_number
                    )
                previous_seq = entry.seq
                entries.append(entry)

        return entries

    def _parse_line(self, line: str, line_number: int) -> WalEntry:
        try:
            raw = json.loads(line)
        except json.JSONDecodeError as e:
            raise PersistenceCorruptionError(self.file_path, f"invalid JSON: {e}", line_number) from e

        if not isinstance(raw, dict):
            raise PersistenceCorruptionError(self.file_path, "entry is not an object", line_number)

        try:
            seq = raw["seq"]
            op = raw["op"]
            key = raw["key"]
        except KeyError as e:
            raise PersistenceCorruptionError(self.file_path, f"missing field {e}", line_number) from e

        if not isinstance(seq, int) or isinstance(seq, bool):
            raise PersistenceCorruptionError(self.file_path, f"invalid seq {seq!r}", line_number)
        if op not in OPERATIONS:
            raise PersistenceCorruptionError(self.file_path, f"unknown operation {op!r}", line_number)
        if not isinstance(key, str):
            raise PersistenceCorruptionError(self.file_path, f"invalid key {key!r}", line_number)

        if op == DEL:
            return WalEntry(seq, op, key)

        if "value" not in raw:
            raise PersistenceCorruptionError(self.file_path, "missing field 'value'", line_number)
        expire_at = raw.get("expire_at")
        if expire_at is not None and not isinstance(expire_at, (int, float)):
            raise PersistenceCorruptionError(self.file_path, f"invalid expire_at {expire_at!r}", line_number)

        return WalEntry(seq, op, key, raw["value"], expire_at)

    async def replay(
        self,
        base: Optional[dict[str, Record]] = None,
        after_seq: int = 0
    ) -> dict[str, Record]:
        """
        Replay the log to reconstruct current state.

        Args:
            base: Starting table (e.g. loaded from a snapshot); copied
            after_seq: Only entries with a larger seq are applied

        Returns:
            Dictionary mapping keys to records (current state)

        Also advances last_seq past every entry in the file so new
        appends continue the sequence.
        """
        entries = await self.read_entries()
        state = dict(base or {})

        pending = [entry for entry in entries if entry.seq > after_seq]
        apply_entries(state, pending)

        if entries:
            self.last_seq = max(self.last_seq, entries[-1].seq)
        self.last_seq = max(self.last_seq, after_seq)

        logger.info(
            f"WAL replay complete: {len(state)} keys, "
            f"{len(pending)} of {len(entries)} entries applied after seq {after_seq}"
        )
        return state

    async def close(self) -> None:
        """
        Close the WAL.

        Currently a no-op since we don't keep file handles open,
        but provided for API consistency.
        """
        logger.debug("WAL closed")
