"""
Job Processor — render, send, record.

Shared by both discovery loops. A job reaches `process()` already in SENDING
(claimed by the caller); the processor always leaves it COMPLETED or FAILED.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Awaitable, Callable, Iterable, Optional

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from core.lifecycle import CLAIMABLE_STATUSES
from core.sender import DeliveryKind, DeliveryResult, NotificationSender
from database.store_base import BaseJobStore
from models.schemas import JobStatus, NotificationJob
from templates.registry import TemplateService

logger = structlog.get_logger()


class JobProcessor:

    def __init__(
        self,
        store: BaseJobStore,
        templates: TemplateService,
        sender: NotificationSender,
        status_write_attempts: int = 5,
        status_retry_delay_s: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.templates = templates
        self.sender = sender
        self.status_write_attempts = status_write_attempts
        self.status_retry_delay_s = status_retry_delay_s
        self._sleep = sleep

    async def record_final_status(self, job_id: str, final: JobStatus) -> bool:
        """
        Move a SENDING job to its terminal status, retrying store errors.
        False when the job had already left SENDING; raises once retries
        are exhausted.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(self.status_write_attempts, 1)),
            wait=wait_exponential(multiplier=self.status_retry_delay_s, max=30),
            sleep=self._sleep,
            reraise=True,
            before_sleep=lambda state: logger.warning(
                "job_status_write_retry",
                job_id=job_id,
                status=final.value,
                attempt=state.attempt_number,
                error=str(state.outcome.exception()),
            ),
        )
        async for attempt in retrying:
            with attempt:
                return await self.store.transition(job_id, [JobStatus.SENDING], final)
        return False

    async def process(self, job: NotificationJob) -> JobStatus:
        """
        Deliver a claimed job and record its terminal status. Returns the
        status written. Raises only if the status cannot be stored after
        retrying.
        """
        try:
            content = await self.templates.render_job(job)
            result = await self.sender.send(job, content)
        except Exception as e:
            logger.error("job_processing_error", job_id=job.id, error=str(e), exc_info=True)
            result = DeliveryResult(False, 0, DeliveryKind.PERMANENT, str(e))

        final = JobStatus.COMPLETED if result.success else JobStatus.FAILED
        recorded = await self.record_final_status(job.id, final)
        if not recorded:
            logger.warning("job_final_status_not_recorded", job_id=job.id, status=final.value)

        if result.success:
            logger.info("job_completed", job_id=job.id, channel=job.type.value, attempts=result.attempts)
        else:
            logger.warning(
                "job_failed",
                job_id=job.id,
                channel=job.type.value,
                kind=result.kind.value,
                attempts=result.attempts,
                error=result.error,
            )
        return final

    async def claim_and_process(
        self, job_id: str, from_statuses: Iterable[JobStatus] = CLAIMABLE_STATUSES,
    ) -> Optional[JobStatus]:
        """Claim one job by id and process it. None when the claim was lost."""
        job = await self.store.claim_job(job_id, from_statuses)
        if job is None:
            logger.info("job_claim_lost", job_id=job_id)
            return None
        return await self.process(job)
