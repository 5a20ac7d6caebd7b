"""
InMemoryJobStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database)
  - Full interface compatibility with SqlJobStore
  - Claims and transitions serialised by one asyncio.Lock (single event loop)
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime
from typing import Iterable, Optional

from core.lifecycle import CLAIMABLE_STATUSES, validate_transition
from database.store_base import BaseJobStore, BaseTemplateStore
from models.schemas import JobStatus, NotificationJob, utcnow

logger = structlog.get_logger()


class InMemoryJobStore(BaseJobStore):
    """
    Full-featured in-memory store with the same interface as SqlJobStore.
    Returns copies so callers never alias stored records.
    """

    def __init__(self):
        self._jobs: dict[str, NotificationJob] = {}     # id → job
        self._lock = asyncio.Lock()
        logger.info("inmemory_job_store_initialized")

    async def create_job(self, job: NotificationJob) -> NotificationJob:
        async with self._lock:
            self._jobs[job.id] = job.model_copy()
        return job.model_copy()

    async def get_job(self, job_id: str) -> Optional[NotificationJob]:
        job = self._jobs.get(job_id)
        return job.model_copy() if job else None

    async def list_jobs(self, status: Optional[JobStatus] = None) -> list[NotificationJob]:
        jobs = sorted(self._jobs.values(), key=lambda j: j.created_at)
        if status is not None:
            jobs = [j for j in jobs if j.status == JobStatus(status)]
        return [j.model_copy() for j in jobs]

    async def find_by_status_before(
        self, status: JobStatus, before: datetime,
    ) -> list[NotificationJob]:
        jobs = [
            j for j in self._jobs.values()
            if j.status == JobStatus(status) and j.send_at <= before
        ]
        return [j.model_copy() for j in sorted(jobs, key=lambda j: j.send_at)]

    def _is_eligible(
        self, job: NotificationJob, now: datetime, stale_queued_before: Optional[datetime],
    ) -> bool:
        if job.status == JobStatus.PENDING:
            return job.send_at <= now
        if job.status == JobStatus.QUEUED and stale_queued_before is not None:
            return job.send_at <= stale_queued_before
        return False

    async def claim_due_jobs(
        self,
        limit: int,
        now: datetime,
        stale_queued_before: Optional[datetime] = None,
    ) -> list[NotificationJob]:
        if limit <= 0:
            return []
        async with self._lock:
            due = sorted(
                (j for j in self._jobs.values() if self._is_eligible(j, now, stale_queued_before)),
                key=lambda j: j.send_at,
            )[:limit]
            stamp = utcnow()
            for job in due:
                job.status = JobStatus.SENDING
                job.updated_at = stamp
            claimed = [j.model_copy() for j in due]

        if claimed:
            logger.info("jobs_claimed", count=len(claimed), job_ids=[j.id for j in claimed])
        return claimed

    async def claim_job(
        self, job_id: str, from_statuses: Iterable[JobStatus],
    ) -> Optional[NotificationJob]:
        sources = validate_transition(from_statuses, JobStatus.SENDING)
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in sources:
                return None
            job.status = JobStatus.SENDING
            job.updated_at = utcnow()
            return job.model_copy()

    async def transition(
        self, job_id: str, from_statuses: Iterable[JobStatus], to_status: JobStatus,
    ) -> bool:
        sources = validate_transition(from_statuses, to_status)
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in sources:
                return False
            job.status = JobStatus(to_status)
            job.updated_at = utcnow()
        logger.debug("job_transitioned", job_id=job_id, to=JobStatus(to_status).value)
        return True


class InMemoryTemplateStore(BaseTemplateStore):

    def __init__(self, templates: dict[str, str] = None):
        self._templates: dict[str, str] = dict(templates or {})

    async def get_template(self, key: str) -> Optional[str]:
        return self._templates.get(key)

    async def upsert_template(self, key: str, content: str) -> None:
        self._templates[key] = content

    async def list_templates(self) -> dict[str, str]:
        return dict(self._templates)
