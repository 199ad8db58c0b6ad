"""
Read-only routes shared by the primary and backup services.
"""
from fastapi import APIRouter, HTTPException, Request, status
import logging

from kvnode.storage.engine import StorageEngine
from .schemas import KeyListing, RecordResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def get_storage(request: Request) -> StorageEngine:
    """Storage engine attached to the app by its lifespan (or by tests)."""
    return request.app.state.storage


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint for monitoring and container orchestration.
    Returns basic node information.
    """
    storage = get_storage(request)
    return {
        "status": "healthy",
        "node_id": storage.node_id,
        "keys_stored": await storage.size(),
        "peers": storage.nodes,
    }


@router.get("/get/{key:path}", response_model=RecordResponse)
async def get_value(key: str, request: Request):
    """
    Retrieve a value and its remaining TTL.

    Raises:
        404: If the key doesn't exist or has expired
    """
    storage = get_storage(request)
    record = await storage.get_with_expiry(key)

    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Key '{key}' not found or expired"
        )

    logger.info(f"GET key='{key}'")
    return RecordResponse(
        key=key,
        value=record.value,
        ttl=record.ttl_remaining(storage.clock()),
        expire_at=record.expire_at
    )


@router.get("/keys", response_model=list[KeyListing])
async def list_keys(request: Request):
    """All live keys with their values and remaining TTLs."""
    storage = get_storage(request)
    now = storage.clock()
    return [
        KeyListing(key=key, value=record.value, ttl=record.ttl_remaining(now))
        for key, record in await storage.items()
    ]
