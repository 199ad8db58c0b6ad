"""
Expiration sweeper: removes expired records independently of reads.
"""
import logging

from .models import MutationStatus
from .scheduler import PeriodicTask

logger = logging.getLogger(__name__)


class ExpirationSweeper:
    """
    Periodically scans the table and expires stale records.

    Removal goes through StorageEngine.expire(), the same path lazy
    expiry on read uses, so a record observed expired by both paths is
    only logged and replicated once.
    """

    def __init__(self, engine, interval: float = 10.0):
        self.engine = engine
        self._task = PeriodicTask("expiration-sweeper", self.sweep, interval)

    @property
    def running(self) -> bool:
        return self._task.running

    async def sweep(self) -> int:
        """
        Run one sweep pass.

        Returns:
            Number of records removed by this pass
        """
        now = self.engine.clock()
        expired = [
            key for key, record in list(self.engine.records.items())
            if record.is_expired(now)
        ]

        removed = 0
        for key in expired:
            if await self.engine.expire(key) == MutationStatus.DELETED:
                removed += 1

        if removed:
            logger.info(f"Sweep removed {removed} expired keys")
        return removed

    def start(self) -> None:
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()
