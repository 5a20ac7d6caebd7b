"""
Worker Pool — bounded asyncio executor for job processing.

N worker tasks drain a bounded asyncio.Queue. Submission never waits:
a full queue raises WorkerPoolFullError so the caller can decide what to do
with the work (mark it FAILED, leave a queue message for redelivery, ...).
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Awaitable, Callable, Optional

from core.errors import WorkerPoolClosedError, WorkerPoolFullError

logger = structlog.get_logger()

Task = Callable[..., Awaitable[Any]]


class WorkerPool:

    def __init__(self, workers: int = 10, queue_capacity: int = 100, name: str = "worker_pool"):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if queue_capacity < 1:
            raise ValueError("queue_capacity must be >= 1")
        self.workers = workers
        self.queue_capacity = queue_capacity
        self.name = name
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: list[asyncio.Task] = []
        self._accepting = False
        self.completed = 0
        self.errors = 0

    @property
    def running(self) -> bool:
        return self._accepting

    @property
    def free_slots(self) -> int:
        if not self._accepting or self._queue is None:
            return 0
        return max(self.queue_capacity - self._queue.qsize(), 0)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        if self._accepting:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_capacity)
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"{self.name}_{i}")
            for i in range(self.workers)
        ]
        self._accepting = True
        logger.info("worker_pool_started", name=self.name, workers=self.workers,
                    queue_capacity=self.queue_capacity)

    def submit(self, fn: Task, *args: Any) -> None:
        if not self._accepting or self._queue is None:
            raise WorkerPoolClosedError()
        try:
            self._queue.put_nowait((fn, args))
        except asyncio.QueueFull:
            raise WorkerPoolFullError(self.queue_capacity)

    async def join(self) -> None:
        """Wait until every submitted task has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, drain_timeout: float = 30.0) -> None:
        """Stop accepting work, let queued tasks finish (bounded), then cancel workers."""
        if not self._tasks:
            self._accepting = False
            return
        self._accepting = False
        try:
            await asyncio.wait_for(self.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("worker_pool_drain_timeout", name=self.name, pending=self.pending)

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("worker_pool_stopped", name=self.name,
                    completed=self.completed, errors=self.errors)

    async def _worker(self, index: int) -> None:
        while True:
            fn, args = await self._queue.get()
            try:
                await fn(*args)
                self.completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.errors += 1
                logger.error("worker_task_failed", pool=self.name, worker=index, error=str(e))
            finally:
                self._queue.task_done()

    def stats(self) -> dict[str, Any]:
        return {
            "workers": self.workers,
            "queue_capacity": self.queue_capacity,
            "pending": self.pending,
            "free_slots": self.free_slots,
            "completed": self.completed,
            "errors": self.errors,
        }
