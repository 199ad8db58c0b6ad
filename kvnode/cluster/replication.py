"""
Replication publisher: best-effort forwarding of mutations to peers.

Mutations are put on a per-peer asyncio.Queue by the storage engine and
drained by one worker task per peer, so the mutation path never waits on
peer network latency. Each worker sends POST <peer>/sync requests one at
a time, so a peer receives notifications in the order they were
published.

Delivery is at-most-once. A failed delivery is logged and dropped; there
is no retry and no catch-up for peers that missed notifications.
Notifications published while the publisher is stopped are dropped.
"""
from dataclasses import dataclass
from typing import Any, Iterable, Optional
import asyncio
import logging

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    """A replicated mutation, as sent to a peer's /sync endpoint."""
    command: str
    key: str
    value: Any = None
    ttl: Optional[float] = None

    def to_payload(self) -> dict:
        return {
            "command": self.command,
            "key": self.key,
            "value": self.value,
            "ttl": self.ttl,
        }


class ReplicationPublisher:
    """
    Fans out local mutations to the registered peers.

    Usage:
        publisher = ReplicationPublisher(["http://localhost:3002"])
        publisher.start()
        publisher.publish("SET", "user:1", "alice")
        await publisher.flush()
        await publisher.stop()

    Peer membership lives only in memory; it is neither persisted nor
    replicated.
    """

    def __init__(
        self,
        peers: Iterable[str] = (),
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            peers: Initial peer base URLs
            timeout: Per-request timeout in seconds; None disables it
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.timeout = timeout
        self.transport = transport
        self.delivered = 0
        self.failed = 0
        self.dropped = 0

        self.queues: dict[str, asyncio.Queue] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self._client: Optional[httpx.AsyncClient] = None

        for peer in peers:
            self.add_node(peer)

    @property
    def nodes(self) -> list[str]:
        return list(self.queues)

    @property
    def running(self) -> bool:
        return self._client is not None

    @property
    def pending(self) -> int:
        """Notifications queued and not yet taken by a worker."""
        return sum(queue.qsize() for queue in self.queues.values())

    def add_node(self, address: str) -> None:
        """Register a peer base URL (e.g. "http://localhost:3002")."""
        address = address.rstrip('/')
        if address in self.queues:
            logger.debug(f"Node {address} already registered")
            return

        self.queues[address] = asyncio.Queue()
        if self.running:
            self._start_worker(address)
        logger.info(f"Node {address} added to the cluster")

    def publish(
        self,
        command: str,
        key: str,
        value: Any = None,
        ttl: Optional[float] = None
    ) -> int:
        """
        Enqueue a notification for every registered peer.

        Returns:
            Number of notifications enqueued (0 while stopped)
        """
        if not self.running:
            if self.queues:
                self.dropped += len(self.queues)
                logger.debug(f"Publisher stopped, dropping {command} key={key}")
            return 0

        notification = Notification(command, key, value, ttl)
        for queue in self.queues.values():
            queue.put_nowait(notification)
        return len(self.queues)

    def start(self) -> None:
        if self.running:
            return

        self._client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)
        for peer in self.queues:
            self._start_worker(peer)
        logger.info(f"Replication publisher started with {len(self.queues)} peers")

    def _start_worker(self, peer: str) -> None:
        self._workers[peer] = asyncio.create_task(self._run(peer), name=f"replication-{peer}")

    async def stop(self) -> None:
        """Stop the workers. Queued and in-flight notifications are dropped."""
        if not self.running:
            return

        workers = list(self._workers.values())
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()

        for peer, queue in self.queues.items():
            self.dropped += queue.qsize()
            self.queues[peer] = asyncio.Queue()

        await self._client.aclose()
        self._client = None
        logger.info("Replication publisher stopped")

    async def flush(self) -> None:
        """Wait until every queued notification has been attempted."""
        await asyncio.gather(*(queue.join() for queue in self.queues.values()))

    async def _run(self, peer: str) -> None:
        queue = self.queues[peer]
        while True:
            notification = await queue.get()
            try:
                await self._deliver(peer, notification)
            finally:
                queue.task_done()

    async def _deliver(self, peer: str, notification: Notification) -> None:
        try:
            response = await self._client.post(f"{peer}/sync", json=notification.to_payload())
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.failed += 1
            logger.warning(
                f"Failed to sync {notification.command} key={notification.key} "
                f"with node {peer}: {e!r}"
            )
            return

        self.delivered += 1
        logger.debug(f"Synced {notification.command} key={notification.key} with node {peer}")
