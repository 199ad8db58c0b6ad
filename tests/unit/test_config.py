"""
Unit tests for environment configuration.
"""
import pytest
from pydantic import ValidationError

from kvnode.config import NodeSettings


def test_defaults(monkeypatch):
    for name in ("NODE_ID", "DATA_DIR", "PEER_NODES", "SWEEP_INTERVAL",
                 "SNAPSHOT_INTERVAL", "REPLICATION_TIMEOUT", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)

    settings = NodeSettings.from_env(default_node_id="primary")

    assert settings.node_id == "primary"
    assert settings.data_dir == "data"
    assert settings.peers == []
    assert settings.sweep_interval == 10.0
    assert settings.snapshot_interval == 60.0
    assert settings.replication_timeout is None
    assert settings.log_level == "INFO"


def test_from_env(monkeypatch):
    monkeypatch.setenv("NODE_ID", "n1")
    monkeypatch.setenv("DATA_DIR", "/tmp/kv")
    monkeypatch.setenv("PEER_NODES", "http://a:3002, http://b:3002,")
    monkeypatch.setenv("SWEEP_INTERVAL", "2.5")
    monkeypatch.setenv("SNAPSHOT_INTERVAL", "30")
    monkeypatch.setenv("REPLICATION_TIMEOUT", "5")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = NodeSettings.from_env()

    assert settings.node_id == "n1"
    assert settings.data_dir == "/tmp/kv"
    assert settings.peers == ["http://a:3002", "http://b:3002"]
    assert settings.sweep_interval == 2.5
    assert settings.snapshot_interval == 30.0
    assert settings.replication_timeout == 5.0
    assert settings.log_level == "DEBUG"


def test_rejects_non_positive_intervals(monkeypatch):
    monkeypatch.setenv("SWEEP_INTERVAL", "0")
    with pytest.raises(ValidationError):
        NodeSettings.from_env()
