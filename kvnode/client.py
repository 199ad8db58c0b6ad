"""
Minimal async client for the primary node's HTTP API.

Usage:
    async with KVClient("http://localhost:3001") as client:
        await client.set("user:1", "alice", ttl=60)
        record = await client.get("user:1")
"""
from typing import Any, Optional
import logging
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)


class KVClient:
    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "KVClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Returns False if the key is locked on the server."""
        response = await self._client.post("/set", json={"key": key, "value": value, "ttl": ttl})
        if response.status_code == 409:
            logger.warning(f"SET {key} rejected: key is locked")
            return False
        response.raise_for_status()
        return True

    async def get(self, key: str) -> Optional[dict]:
        """The record as {key, value, ttl, expire_at}, or None if absent."""
        response = await self._client.get(f"/get/{quote(key, safe='')}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    async def delete(self, key: str) -> bool:
        """Returns True if the key existed and was deleted."""
        response = await self._client.delete(f"/del/{quote(key, safe='')}")
        if response.status_code in (404, 409):
            return False
        response.raise_for_status()
        return True

    async def delete_matching(self, pattern: str) -> list[str]:
        response = await self._client.delete("/keys", params={"contains": pattern})
        if response.status_code == 404:
            return []
        response.raise_for_status()
        return response.json()["deleted"]

    async def keys(self) -> list[dict]:
        response = await self._client.get("/keys")
        response.raise_for_status()
        return response.json()

    async def add_node(self, address: str) -> list[str]:
        response = await self._client.post("/nodes", json={"address": address})
        response.raise_for_status()
        return response.json()["nodes"]
