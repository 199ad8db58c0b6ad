"""
Key-Value Store - Primary Node FastAPI Application

Accepts client writes and forwards them to the registered peers.

Run with:
    uvicorn kvnode.main:app --port 3001
"""
from fastapi import FastAPI, HTTPException, Query, Request, status
from contextlib import asynccontextmanager
from typing import Optional
import logging

from kvnode.api.routes import get_storage, router
from kvnode.api.schemas import LockRequest, NodeRequest, SetRequest
from kvnode.cluster.replication import ReplicationPublisher
from kvnode.config import NodeSettings
from kvnode.storage.engine import StorageEngine
from kvnode.storage.models import MutationStatus

settings = NodeSettings.from_env(default_node_id="primary")

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifecycle manager for FastAPI application.

    Handles startup (recovery, background tasks) and shutdown.
    A corrupted WAL or snapshot aborts startup.
    """
    publisher = ReplicationPublisher(settings.peers, timeout=settings.replication_timeout)
    storage = StorageEngine(
        settings.data_dir,
        settings.node_id,
        publisher=publisher,
        sweep_interval=settings.sweep_interval,
        snapshot_interval=settings.snapshot_interval
    )
    await storage.initialize()
    await storage.start()
    app.state.storage = storage

    logger.info(f"✅ Primary node '{settings.node_id}' ready with {await storage.size()} keys")

    yield

    await storage.close()
    logger.info("✅ Primary node closed")


app = FastAPI(
    title="Key-Value Store",
    description="In-memory key-value store with TTLs, WAL + snapshot persistence and peer replication",
    version="0.1.0",
    lifespan=lifespan
)
app.include_router(router)


def _locked(key: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"Key '{key}' is locked"
    )


@app.post("/set")
async def set_value(request: SetRequest, http_request: Request):
    """
    Store or update a key-value pair with an optional TTL in seconds.

    Raises:
        409: If the key is locked
    """
    storage = get_storage(http_request)
    result = await storage.set(request.key, request.value, request.ttl)

    if result == MutationStatus.LOCKED:
        raise _locked(request.key)

    logger.info(f"SET key='{request.key}', ttl={request.ttl}")
    return {"status": "OK", "key": request.key}


@app.delete("/del/{key:path}")
async def delete_value(key: str, http_request: Request):
    """
    Delete a single key (exact match).

    Raises:
        404: If key doesn't exist
        409: If the key is locked
    """
    storage = get_storage(http_request)
    result = await storage.delete(key)

    if result == MutationStatus.LOCKED:
        raise _locked(key)
    if result == MutationStatus.NOT_FOUND:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Key '{key}' not found"
        )

    logger.info(f"DELETE key='{key}'")
    return {"status": "OK", "deleted": [key]}


@app.delete("/keys")
async def delete_matching(http_request: Request, contains: str = Query(min_length=1)):
    """
    Delete every key whose name contains the given substring.

    Raises:
        404: If no key was deleted
    """
    storage = get_storage(http_request)
    deleted = await storage.delete_matching(contains)

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No deletable keys matching '{contains}'"
        )

    return {"status": "OK", "deleted": deleted}


@app.post("/lock/{key:path}")
async def lock_key(key: str, http_request: Request, request: Optional[LockRequest] = None):
    """
    Take the advisory lock on a key, optionally as a lease.

    Raises:
        409: If the key is already locked
    """
    storage = get_storage(http_request)
    request = request or LockRequest()

    if not storage.lock(key, request.holder, request.lease_seconds):
        raise _locked(key)

    return {"status": "OK", "key": key, "locked": True}


@app.delete("/lock/{key:path}")
async def unlock_key(key: str, http_request: Request):
    """Release the lock on a key. Succeeds even if it was not locked."""
    get_storage(http_request).unlock(key)
    return {"status": "OK", "key": key, "locked": False}


@app.post("/nodes")
async def add_node(request: NodeRequest, http_request: Request):
    """Register a peer to receive replicated mutations."""
    storage = get_storage(http_request)
    storage.add_node(request.address)
    return {"status": "OK", "nodes": storage.nodes}


@app.get("/nodes")
async def list_nodes(http_request: Request):
    return {"nodes": get_storage(http_request).nodes}


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "service": "Key-Value Store",
        "role": "primary",
        "node_id": settings.node_id,
        "endpoints": {
            "health": "/health",
            "set": "POST /set",
            "get": "GET /get/{key}",
            "delete": "DELETE /del/{key}",
            "delete_matching": "DELETE /keys?contains={pattern}",
            "keys": "GET /keys",
            "lock": "POST /lock/{key}",
            "unlock": "DELETE /lock/{key}",
            "nodes": "POST /nodes"
        }
    }
