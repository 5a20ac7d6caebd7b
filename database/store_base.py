"""
Abstract stores — Interfaces for all storage backends.

Implementations:
  - SqlJobStore / SqlTemplateStore            (PostgreSQL / MySQL / SQLite via SQLAlchemy)
  - InMemoryJobStore / InMemoryTemplateStore  (dict-based, single-process, no persistence)

Every job mutation is a single-row conditional update scoped to one job id.
`claim_due_jobs` is the only operation that coordinates across workers and
service instances: it must atomically reserve rows so that two concurrent
callers never receive the same job, and must skip rows another caller is
reserving instead of waiting on them.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

from models.schemas import JobStatus, NotificationJob


class BaseJobStore(ABC):
    """Interface that all job store backends must implement."""

    @abstractmethod
    async def create_job(self, job: NotificationJob) -> NotificationJob:
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[NotificationJob]:
        ...

    @abstractmethod
    async def list_jobs(self, status: Optional[JobStatus] = None) -> list[NotificationJob]:
        ...

    @abstractmethod
    async def find_by_status_before(
        self, status: JobStatus, before: datetime,
    ) -> list[NotificationJob]:
        """Jobs in `status` with send_at <= before, oldest first."""
        ...

    @abstractmethod
    async def claim_due_jobs(
        self,
        limit: int,
        now: datetime,
        stale_queued_before: Optional[datetime] = None,
    ) -> list[NotificationJob]:
        """
        Atomically move up to `limit` due PENDING jobs (send_at <= now) to
        SENDING and return them ordered by send_at. When `stale_queued_before`
        is given, QUEUED jobs with send_at <= stale_queued_before are eligible
        too.
        """
        ...

    @abstractmethod
    async def claim_job(
        self, job_id: str, from_statuses: Iterable[JobStatus],
    ) -> Optional[NotificationJob]:
        """Move one job to SENDING if its status is in from_statuses."""
        ...

    @abstractmethod
    async def transition(
        self, job_id: str, from_statuses: Iterable[JobStatus], to_status: JobStatus,
    ) -> bool:
        """Conditional status update. Returns False if the job was not in from_statuses."""
        ...


class BaseTemplateStore(ABC):
    """Key → template content mapping."""

    @abstractmethod
    async def get_template(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def upsert_template(self, key: str, content: str) -> None:
        ...

    @abstractmethod
    async def list_templates(self) -> dict[str, str]:
        ...
