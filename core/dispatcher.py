"""
Dispatch Loop — database-claim discovery.

Flow per cycle:
    claim up to min(batch_size, pool.free_slots) due jobs (→ SENDING)
    → submit each to the worker pool (never awaited here)
    → a job the pool refuses is marked FAILED immediately

With `queued_fallback_s > 0` the claim also takes QUEUED jobs that are
overdue by at least that long, covering lost or over-delayed queue messages.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timedelta
from typing import Callable, Optional

from core.discovery import DiscoveryLoop
from core.errors import WorkerPoolClosedError, WorkerPoolFullError
from core.processor import JobProcessor
from core.worker_pool import WorkerPool
from database.store_base import BaseJobStore
from models.schemas import JobStatus, NotificationJob, utcnow

logger = structlog.get_logger()


class DispatchLoop(DiscoveryLoop):

    name = "dispatch_loop"

    def __init__(
        self,
        store: BaseJobStore,
        processor: JobProcessor,
        pool: WorkerPool,
        poll_interval_s: float = 60.0,
        batch_size: int = 50,
        queued_fallback_s: float = 900.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(pool, poll_interval_s)
        self.store = store
        self.processor = processor
        self.batch_size = batch_size
        self.queued_fallback_s = queued_fallback_s
        self._clock = clock

    async def poll_and_claim(self, limit: int, now: datetime) -> list[NotificationJob]:
        stale_before: Optional[datetime] = None
        if self.queued_fallback_s > 0:
            stale_before = now - timedelta(seconds=self.queued_fallback_s)
        return await self.store.claim_due_jobs(limit, now, stale_queued_before=stale_before)

    async def poll_cycle(self) -> dict[str, int]:
        """
        Returns counts: {"claimed": N, "submitted": N, "rejected": N}
        """
        stats = {"claimed": 0, "submitted": 0, "rejected": 0}

        limit = min(self.batch_size, self.pool.free_slots)
        if limit <= 0:
            logger.debug("dispatch_cycle_skipped", reason="worker_pool_saturated")
            return stats

        jobs = await self.poll_and_claim(limit, self._clock())
        stats["claimed"] = len(jobs)

        for job in jobs:
            try:
                self.pool.submit(self.processor.process, job)
                stats["submitted"] += 1
            except (WorkerPoolFullError, WorkerPoolClosedError) as e:
                stats["rejected"] += 1
                logger.error("job_submission_failed", job_id=job.id, error=str(e))
                try:
                    await self.processor.record_final_status(job.id, JobStatus.FAILED)
                except Exception as write_error:
                    logger.error("job_final_status_write_failed", job_id=job.id,
                                 error=str(write_error), exc_info=True)

        if jobs:
            logger.info("dispatch_cycle_complete", **stats)
        return stats
