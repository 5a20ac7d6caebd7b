"""
Notification Service — the facade behind the REST API.

Creation persists every request as a PENDING job and, when queue mode is
on, hands it to the queue publisher. Reads and cancellation go straight to
the job store; cancellation is only possible while a job is PENDING.
"""
from __future__ import annotations

import structlog
from typing import Iterable, Optional

from core.errors import EmptyBatchError, JobConflictError, JobNotFoundError
from database.store_base import BaseJobStore
from job_queue.publisher import QueuePublisher
from models.schemas import (
    CreateNotificationRequest, JobStatus, NotificationJob, NotificationResponse,
)
from templates.registry import TemplateService

logger = structlog.get_logger()


class NotificationService:

    def __init__(
        self,
        store: BaseJobStore,
        templates: TemplateService,
        publisher: Optional[QueuePublisher] = None,
    ):
        self.store = store
        self.templates = templates
        self.publisher = publisher

    async def create_jobs(self, requests: Iterable[CreateNotificationRequest]) -> list[NotificationResponse]:
        requests = list(requests or [])
        if not requests:
            raise EmptyBatchError()

        responses = []
        for request in requests:
            job = await self.store.create_job(request.to_job())
            if self.publisher is not None:
                await self.publisher.enqueue(job)
                job = await self.store.get_job(job.id) or job
            responses.append(NotificationResponse.from_job(job))

        logger.info("jobs_created", count=len(responses), queued=self.publisher is not None)
        return responses

    async def get_job(self, job_id: str) -> NotificationJob:
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs(self, status: Optional[JobStatus] = None) -> list[NotificationJob]:
        return await self.store.list_jobs(status)

    async def cancel_job(self, job_id: str) -> NotificationJob:
        job = await self.get_job(job_id)
        if job.status != JobStatus.PENDING:
            raise JobConflictError(job_id, job.status.value, "cancel")

        if not await self.store.transition(job_id, [JobStatus.PENDING], JobStatus.CANCELLED):
            current = await self.get_job(job_id)
            raise JobConflictError(job_id, current.status.value, "cancel")

        logger.info("job_cancelled", job_id=job_id)
        return await self.get_job(job_id)

    async def upsert_template(self, key: str, content: str) -> None:
        await self.templates.upsert_template(key, content)

    async def list_templates(self) -> dict[str, str]:
        return await self.templates.list_templates()
