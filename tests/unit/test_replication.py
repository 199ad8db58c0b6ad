"""
Unit tests for the replication publisher.

Peers are simulated with httpx.MockTransport.
"""
import asyncio
import json

import httpx
import pytest

from kvnode.cluster.replication import Notification, ReplicationPublisher
from kvnode.storage.engine import StorageEngine


def recording_transport(sent: list, status_code: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        sent.append((str(request.url), json.loads(request.content)))
        return httpx.Response(status_code, json={"status": "Synced"})
    return httpx.MockTransport(handler)


def test_notification_payload():
    payload = Notification("SET", "a", "1", 30).to_payload()
    assert payload == {"command": "SET", "key": "a", "value": "1", "ttl": 30}


def test_add_node_ignores_duplicates():
    publisher = ReplicationPublisher(["http://peer-a/"])
    publisher.add_node("http://peer-a")
    publisher.add_node("http://peer-b")

    assert publisher.nodes == ["http://peer-a", "http://peer-b"]


@pytest.mark.asyncio
async def test_publish_without_peers_enqueues_nothing():
    publisher = ReplicationPublisher(transport=recording_transport([]))
    publisher.start()

    assert publisher.publish("SET", "a", "1") == 0
    assert publisher.pending == 0
    await publisher.stop()


def test_publish_while_stopped_is_dropped():
    publisher = ReplicationPublisher(["http://peer-a", "http://peer-b"])

    assert publisher.publish("SET", "a", "1") == 0
    assert publisher.pending == 0
    assert publisher.dropped == 2


@pytest.mark.asyncio
async def test_publish_while_stopped_is_not_sent_after_restart():
    sent = []
    publisher = ReplicationPublisher(["http://peer"], transport=recording_transport(sent))
    publisher.start()
    await publisher.stop()

    publisher.publish("SET", "a", "1")
    publisher.start()
    await publisher.flush()
    await publisher.stop()

    assert sent == []
    assert publisher.pending == 0


@pytest.mark.asyncio
async def test_publish_delivers_to_every_peer():
    sent = []
    publisher = ReplicationPublisher(
        ["http://peer-a", "http://peer-b"],
        transport=recording_transport(sent)
    )
    publisher.start()

    assert publisher.publish("SET", "a", "1", ttl=5) == 2
    await publisher.flush()
    await publisher.stop()

    assert sorted(url for url, _ in sent) == ["http://peer-a/sync", "http://peer-b/sync"]
    assert all(body == {"command": "SET", "key": "a", "value": "1", "ttl": 5} for _, body in sent)
    assert publisher.delivered == 2


@pytest.mark.asyncio
async def test_failed_delivery_is_dropped_not_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("peer unreachable", request=request)

    publisher = ReplicationPublisher(["http://down"], transport=httpx.MockTransport(handler))
    publisher.start()

    publisher.publish("DEL", "a")
    await publisher.flush()
    await publisher.stop()

    assert len(attempts) == 1
    assert publisher.failed == 1
    assert publisher.delivered == 0


@pytest.mark.asyncio
async def test_error_status_counts_as_failure():
    sent = []
    publisher = ReplicationPublisher(["http://peer"], transport=recording_transport(sent, 500))
    publisher.start()

    publisher.publish("SET", "a", "1")
    await publisher.flush()
    await publisher.stop()

    assert len(sent) == 1
    assert publisher.failed == 1


@pytest.mark.asyncio
async def test_peer_receives_mutations_in_publish_order(tmp_path, clock):
    received = []

    async def slow_set_handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["command"] == "SET":
            await asyncio.sleep(0.05)
        received.append(body["command"])
        return httpx.Response(200, json={"status": "Synced"})

    publisher = ReplicationPublisher(["http://peer"], transport=httpx.MockTransport(slow_set_handler))
    engine = StorageEngine(str(tmp_path), "test", publisher=publisher, clock=clock)
    await engine.initialize()
    await engine.start()

    await engine.set("k", "v")
    await engine.delete("k")
    await publisher.flush()
    await engine.close()

    assert received == ["SET", "DEL"]


@pytest.mark.asyncio
async def test_slow_peer_does_not_hold_back_other_peers():
    received = []
    release = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "slow":
            await release.wait()
        received.append(request.url.host)
        return httpx.Response(200, json={"status": "Synced"})

    publisher = ReplicationPublisher(
        ["http://slow", "http://fast"],
        transport=httpx.MockTransport(handler)
    )
    publisher.start()

    publisher.publish("SET", "a", "1")
    publisher.publish("SET", "b", "2")
    for _ in range(20):
        if received.count("fast") == 2:
            break
        await asyncio.sleep(0.01)

    assert received == ["fast", "fast"]

    release.set()
    await publisher.flush()
    await publisher.stop()
    assert received.count("slow") == 2


@pytest.mark.asyncio
async def test_node_added_while_running_gets_a_worker():
    sent = []
    publisher = ReplicationPublisher(transport=recording_transport(sent))
    publisher.start()
    publisher.add_node("http://late")

    publisher.publish("DEL", "a")
    await publisher.flush()
    await publisher.stop()

    assert [url for url, _ in sent] == ["http://late/sync"]


@pytest.mark.asyncio
async def test_engine_mutations_are_published(tmp_path, clock):
    sent = []
    publisher = ReplicationPublisher(transport=recording_transport(sent))
    engine = StorageEngine(str(tmp_path), "test", publisher=publisher, clock=clock)
    await engine.initialize()
    engine.add_node("http://peer")
    await engine.start()

    await engine.set("a", "1", ttl=30)
    await engine.set("b", "2")
    await engine.delete("a")
    await engine.delete("missing")
    engine.lock("b")
    await engine.set("b", "3")
    await engine.set("c", "4", replicate=False)

    await publisher.flush()
    await engine.close()

    bodies = [body for _, body in sent]
    assert len(bodies) == 3
    assert {"command": "SET", "key": "a", "value": "1", "ttl": 30} in bodies
    assert {"command": "SET", "key": "b", "value": "2", "ttl": None} in bodies
    assert {"command": "DEL", "key": "a", "value": None, "ttl": None} in bodies
