"""
Unit tests for the snapshot store.
"""
import asyncio
import json
import os

import pytest

from kvnode.storage.errors import PersistenceCorruptionError
from kvnode.storage.models import Record
from kvnode.storage.snapshot import SnapshotStore


@pytest.mark.asyncio
async def test_snapshot_write_and_load(tmp_path):
    store = SnapshotStore(str(tmp_path / "node.snapshot.json"))
    records = {"a": Record("1"), "b": Record({"nested": True}, 123.5)}

    await store.write(records, wal_seq=7)
    snapshot = await store.load()

    assert snapshot.records == records
    assert snapshot.wal_seq == 7
    assert snapshot.taken_at > 0


@pytest.mark.asyncio
async def test_snapshot_missing_returns_none(tmp_path):
    store = SnapshotStore(str(tmp_path / "node.snapshot.json"))
    assert await store.load() is None


@pytest.mark.asyncio
async def test_snapshot_replaces_previous(tmp_path):
    store = SnapshotStore(str(tmp_path / "node.snapshot.json"))

    await store.write({"a": Record("1")}, wal_seq=1)
    await store.write({"b": Record("2")}, wal_seq=2)

    snapshot = await store.load()
    assert snapshot.records == {"b": Record("2")}
    assert not os.path.exists(store.tmp_path)


@pytest.mark.asyncio
async def test_snapshot_concurrent_writes_do_not_collide(tmp_path):
    """Overlapping writes share one temp file and must not interleave"""
    store = SnapshotStore(str(tmp_path / "node.snapshot.json"))

    await asyncio.gather(
        store.write({"a": Record("1")}, wal_seq=1),
        store.write({"b": Record("2")}, wal_seq=2)
    )

    snapshot = await store.load()
    assert snapshot.records == {"b": Record("2")}
    assert snapshot.wal_seq == 2
    assert not os.path.exists(store.tmp_path)


@pytest.mark.asyncio
async def test_snapshot_ignores_leftover_temp_file(tmp_path):
    """A half-written temp file from a crash does not affect the snapshot"""
    store = SnapshotStore(str(tmp_path / "node.snapshot.json"))
    await store.write({"a": Record("1")}, wal_seq=1)

    with open(store.tmp_path, 'w') as f:
        f.write('{"version": 1, "wal_seq": 5, "rec')

    snapshot = await store.load()
    assert snapshot.records == {"a": Record("1")}

    await store.write({"c": Record("3")}, wal_seq=3)
    assert (await store.load()).records == {"c": Record("3")}


@pytest.mark.asyncio
async def test_snapshot_document_format(tmp_path):
    path = tmp_path / "node.snapshot.json"
    store = SnapshotStore(str(path))
    await store.write({"a": Record("1", 10.0)}, wal_seq=4)

    document = json.loads(path.read_text())
    assert document["version"] == 1
    assert document["wal_seq"] == 4
    assert document["records"] == {"a": {"value": "1", "expire_at": 10.0}}


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [
    '{"version": 1, "wal_seq": 0, "rec',
    '[]',
    '{"version": 2, "wal_seq": 0, "records": {}}',
    '{"version": 1, "wal_seq": -1, "records": {}}',
    '{"version": 1, "wal_seq": 0}',
    '{"version": 1, "wal_seq": 0, "records": {"a": "1"}}',
    '{"version": 1, "wal_seq": 0, "records": {"a": {"value": "1", "expire_at": "soon"}}}',
])
async def test_snapshot_corruption_is_fatal(tmp_path, content):
    path = tmp_path / "node.snapshot.json"
    path.write_text(content)

    with pytest.raises(PersistenceCorruptionError):
        await SnapshotStore(str(path)).load()
