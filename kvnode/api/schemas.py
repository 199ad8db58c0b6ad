"""
Request/response models for the HTTP services.
"""
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class SetRequest(BaseModel):
    """Request model for SET"""
    key: str = Field(min_length=1)
    value: Any
    ttl: Optional[float] = Field(default=None, gt=0)


class SyncRequest(BaseModel):
    """Replicated mutation received from a peer"""
    command: Literal["SET", "DEL"]
    key: str = Field(min_length=1)
    value: Any = None
    ttl: Optional[float] = None


class LockRequest(BaseModel):
    holder: Optional[str] = None
    lease_seconds: Optional[float] = Field(default=None, gt=0)


class NodeRequest(BaseModel):
    address: str = Field(min_length=1)


class RecordResponse(BaseModel):
    """Response model for GET operations"""
    key: str
    value: Any
    ttl: Optional[float] = None
    expire_at: Optional[float] = None


class KeyListing(BaseModel):
    key: str
    value: Any
    ttl: Optional[float] = None
