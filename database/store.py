"""
SqlJobStore — Portable SQL queries for PostgreSQL, MySQL, SQLite.

Claiming due jobs:
  - Dialects with UPDATE … RETURNING (PostgreSQL, SQLite ≥ 3.35) claim in a
    single statement:
        UPDATE notification_jobs SET status = 'SENDING'
         WHERE id IN (SELECT id … ORDER BY send_at LIMIT :n FOR UPDATE SKIP LOCKED)
           AND status IN ('PENDING', 'QUEUED')
     RETURNING *
  - Others (MySQL) lock the candidates with SELECT … FOR UPDATE SKIP LOCKED
    and flip them with a conditional UPDATE inside the same transaction.

SKIP LOCKED keeps concurrent pollers from waiting on each other's rows; the
status predicate on the UPDATE keeps a row from being claimed twice on
backends that ignore row locks (SQLite serialises writers instead).
"""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select, update, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.lifecycle import CLAIMABLE_STATUSES, validate_transition
from database.models import NotificationJobRow, TemplateRow
from database.session import get_session_factory, session_scope
from database.store_base import BaseJobStore, BaseTemplateStore
from models.schemas import JobStatus, NotificationJob, utcnow

logger = structlog.get_logger()


def _values(statuses: Iterable[JobStatus]) -> list[str]:
    return [JobStatus(s).value for s in statuses]


class _SqlStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = None):
        self._factory = session_factory

    def _session(self):
        return session_scope(self._factory or get_session_factory())

    @staticmethod
    def _supports_returning(db: AsyncSession) -> bool:
        return bool(getattr(db.get_bind().dialect, "update_returning", False))


class SqlJobStore(_SqlStore, BaseJobStore):
    """
    Persistent job store backed by any SQLAlchemy-supported database.
    Works with PostgreSQL, MySQL 8+, and SQLite.
    """

    async def create_job(self, job: NotificationJob) -> NotificationJob:
        async with self._session() as db:
            row = NotificationJobRow.from_job(job)
            db.add(row)
            await db.flush()
            return row.to_job()

    async def get_job(self, job_id: str) -> Optional[NotificationJob]:
        async with self._session() as db:
            row = await db.get(NotificationJobRow, job_id)
            return row.to_job() if row else None

    async def list_jobs(self, status: Optional[JobStatus] = None) -> list[NotificationJob]:
        async with self._session() as db:
            stmt = select(NotificationJobRow).order_by(NotificationJobRow.created_at)
            if status is not None:
                stmt = stmt.where(NotificationJobRow.status == JobStatus(status).value)
            result = await db.scalars(stmt)
            return [r.to_job() for r in result.all()]

    async def find_by_status_before(
        self, status: JobStatus, before: datetime,
    ) -> list[NotificationJob]:
        async with self._session() as db:
            stmt = (
                select(NotificationJobRow)
                .where(and_(
                    NotificationJobRow.status == JobStatus(status).value,
                    NotificationJobRow.send_at <= before,
                ))
                .order_by(NotificationJobRow.send_at)
            )
            result = await db.scalars(stmt)
            return [r.to_job() for r in result.all()]

    async def claim_due_jobs(
        self,
        limit: int,
        now: datetime,
        stale_queued_before: Optional[datetime] = None,
    ) -> list[NotificationJob]:
        if limit <= 0:
            return []

        eligible = and_(
            NotificationJobRow.status == JobStatus.PENDING.value,
            NotificationJobRow.send_at <= now,
        )
        if stale_queued_before is not None:
            eligible = or_(eligible, and_(
                NotificationJobRow.status == JobStatus.QUEUED.value,
                NotificationJobRow.send_at <= stale_queued_before,
            ))

        candidates = (
            select(NotificationJobRow.id)
            .where(eligible)
            .order_by(NotificationJobRow.send_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        claimable = _values(CLAIMABLE_STATUSES)

        async with self._session() as db:
            if self._supports_returning(db):
                stmt = (
                    update(NotificationJobRow)
                    .where(and_(
                        NotificationJobRow.id.in_(candidates),
                        NotificationJobRow.status.in_(claimable),
                    ))
                    .values(status=JobStatus.SENDING.value, updated_at=utcnow())
                    .returning(NotificationJobRow)
                    .execution_options(synchronize_session=False)
                )
                rows = (await db.scalars(stmt)).all()
            else:
                ids = list((await db.scalars(candidates)).all())
                if not ids:
                    return []
                await db.execute(
                    update(NotificationJobRow)
                    .where(and_(
                        NotificationJobRow.id.in_(ids),
                        NotificationJobRow.status.in_(claimable),
                    ))
                    .values(status=JobStatus.SENDING.value, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                result = await db.scalars(
                    select(NotificationJobRow)
                    .where(NotificationJobRow.id.in_(ids))
                    .execution_options(populate_existing=True)
                )
                rows = [r for r in result.all() if r.status == JobStatus.SENDING.value]

            jobs = sorted((r.to_job() for r in rows), key=lambda j: j.send_at)

        if jobs:
            logger.info("jobs_claimed", count=len(jobs), job_ids=[j.id for j in jobs])
        return jobs

    async def claim_job(
        self, job_id: str, from_statuses: Iterable[JobStatus],
    ) -> Optional[NotificationJob]:
        sources = validate_transition(from_statuses, JobStatus.SENDING)
        stmt = (
            update(NotificationJobRow)
            .where(and_(
                NotificationJobRow.id == job_id,
                NotificationJobRow.status.in_(_values(sources)),
            ))
            .values(status=JobStatus.SENDING.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self._session() as db:
            if self._supports_returning(db):
                row = (await db.scalars(stmt.returning(NotificationJobRow))).one_or_none()
                return row.to_job() if row else None

            result = await db.execute(stmt)
            if result.rowcount != 1:
                return None
            row = await db.get(NotificationJobRow, job_id, populate_existing=True)
            return row.to_job() if row else None

    async def transition(
        self, job_id: str, from_statuses: Iterable[JobStatus], to_status: JobStatus,
    ) -> bool:
        sources = validate_transition(from_statuses, to_status)
        async with self._session() as db:
            result = await db.execute(
                update(NotificationJobRow)
                .where(and_(
                    NotificationJobRow.id == job_id,
                    NotificationJobRow.status.in_(_values(sources)),
                ))
                .values(status=JobStatus(to_status).value, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount == 1

        if changed:
            logger.debug("job_transitioned", job_id=job_id, to=JobStatus(to_status).value)
        return changed


class SqlTemplateStore(_SqlStore, BaseTemplateStore):
    """Template table access. Reads normally go through templates.registry.TemplateService."""

    async def get_template(self, key: str) -> Optional[str]:
        async with self._session() as db:
            result = await db.execute(
                select(TemplateRow.content).where(TemplateRow.key_name == key)
            )
            return result.scalar_one_or_none()

    async def upsert_template(self, key: str, content: str) -> None:
        async with self._session() as db:
            result = await db.execute(select(TemplateRow).where(TemplateRow.key_name == key))
            row = result.scalar_one_or_none()
            if row:
                row.content = content
            else:
                db.add(TemplateRow(key_name=key, content=content))

    async def list_templates(self) -> dict[str, str]:
        async with self._session() as db:
            result = await db.execute(select(TemplateRow.key_name, TemplateRow.content))
            return {key: content for key, content in result.all()}
