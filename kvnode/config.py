"""
Node configuration, read from environment variables.
"""
from typing import Optional
import os

from pydantic import BaseModel, Field


class NodeSettings(BaseModel):
    """
    Settings for one node.

    Environment variables:
        NODE_ID              - node name, used for data file names
        DATA_DIR             - directory for the WAL and snapshot
        PEER_NODES           - comma-separated peer base URLs
        SWEEP_INTERVAL       - seconds between expiration sweeps
        SNAPSHOT_INTERVAL    - seconds between snapshots
        REPLICATION_TIMEOUT  - per-request timeout; unset means none
        LOG_LEVEL            - logging level name
    """
    node_id: str = "node"
    data_dir: str = "data"
    peers: list[str] = Field(default_factory=list)
    sweep_interval: float = Field(default=10.0, gt=0)
    snapshot_interval: float = Field(default=60.0, gt=0)
    replication_timeout: Optional[float] = Field(default=None, gt=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, default_node_id: str = "node") -> "NodeSettings":
        peers = os.getenv("PEER_NODES", "")
        timeout = os.getenv("REPLICATION_TIMEOUT")

        return cls(
            node_id=os.getenv("NODE_ID", default_node_id),
            data_dir=os.getenv("DATA_DIR", "data"),
            peers=[peer.strip() for peer in peers.split(",") if peer.strip()],
            sweep_interval=float(os.getenv("SWEEP_INTERVAL", "10")),
            snapshot_interval=float(os.getenv("SNAPSHOT_INTERVAL", "60")),
            replication_timeout=float(timeout) if timeout else None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
