"""
Key-Value Store - Backup Node FastAPI Application

Receives replicated mutations from a primary on /sync and applies them
through its own storage engine, so its WAL and snapshots are written the
same way as the primary's. Also serves reads.

Run with:
    NODE_ID=backup uvicorn kvnode.backup:app --port 3002
"""
from fastapi import FastAPI, HTTPException, Request, status
from contextlib import asynccontextmanager
import logging

from kvnode.api.routes import get_storage, router
from kvnode.api.schemas import SyncRequest
from kvnode.cluster.replication import ReplicationPublisher
from kvnode.config import NodeSettings
from kvnode.storage.engine import StorageEngine
from kvnode.storage.models import MutationStatus
from kvnode.storage.wal import SET

settings = NodeSettings.from_env(default_node_id="backup")

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
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

    logger.info(f"✅ Backup node '{settings.node_id}' ready with {await storage.size()} keys")

    yield

    await storage.close()
    logger.info("✅ Backup node closed")


app = FastAPI(
    title="Key-Value Store Backup",
    description="Backup node applying mutations replicated from a primary",
    version="0.1.0",
    lifespan=lifespan
)
app.include_router(router)


@app.post("/sync")
async def sync(request: SyncRequest, http_request: Request):
    """
    Apply a replicated SET or DEL.

    The mutation is not forwarded again. Deleting a key that is already
    gone is accepted.

    Raises:
        409: If the key is locked on this node
    """
    storage = get_storage(http_request)
    logger.debug(f"Received sync: {request.command} key='{request.key}'")

    if request.command == SET:
        result = await storage.set(request.key, request.value, request.ttl, replicate=False)
    else:
        result = await storage.delete(request.key, replicate=False)

    if result == MutationStatus.LOCKED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Key '{request.key}' is locked"
        )

    return {"status": "Synced", "result": result.value}
