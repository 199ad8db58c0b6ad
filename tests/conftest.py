"""
Shared fixtures.
"""
import pytest

from kvnode.storage.engine import StorageEngine


class FakeClock:
    """Manually advanced clock for deterministic expiry."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def engine(tmp_path, clock):
    """Initialized engine with no background tasks running"""
    engine = StorageEngine(str(tmp_path), "test", clock=clock)
    await engine.initialize()
    yield engine
    await engine.close()
