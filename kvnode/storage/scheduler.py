"""
Fixed-period background task with an explicit start/stop lifecycle.
"""
from typing import Awaitable, Callable, Optional
import asyncio
import logging

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Calls an async callback every `interval` seconds until stopped.

    The first call happens one interval after start(). An exception from
    the callback is logged and the loop keeps going.
    """

    def __init__(self, name: str, callback: Callable[[], Awaitable[object]], interval: float):
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.name = name
        self.callback = callback
        self.interval = interval
        self.runs = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info(f"Started periodic task '{self.name}' every {self.interval}s")

    async def stop(self) -> None:
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Stopped periodic task '{self.name}'")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.callback()
            except Exception:
                logger.exception(f"Periodic task '{self.name}' failed")
            self.runs += 1
