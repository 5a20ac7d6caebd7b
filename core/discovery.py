"""
Discovery Loop — shared start/stop/poll scaffolding for job discovery.

Both the database dispatch loop and the queue-poll loop run one
`poll_cycle()` per tick as a background task inside the FastAPI lifespan,
then sleep a fixed interval. A failing cycle is logged and the loop carries
on with the next tick.
"""
from __future__ import annotations

import asyncio
import structlog
from abc import ABC, abstractmethod
from typing import Optional

from core.worker_pool import WorkerPool

logger = structlog.get_logger()


class DiscoveryLoop(ABC):

    name = "discovery_loop"

    def __init__(self, pool: WorkerPool, poll_interval_s: float = 60.0):
        self.pool = pool
        self.poll_interval_s = poll_interval_s
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop as a background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop(), name=self.name)
        logger.info(f"{self.name}_started", interval_s=self.poll_interval_s)

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info(f"{self.name}_stopped", cycles=self.cycles)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.poll_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("poll_cycle_error", loop=self.name, error=str(e))

            self.cycles += 1
            await asyncio.sleep(self.poll_interval_s)

    @abstractmethod
    async def poll_cycle(self) -> dict[str, int]:
        """One discovery pass. Returns per-cycle counters."""
        ...
