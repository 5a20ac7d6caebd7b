"""
SQLAlchemy ORM models — Cross-database compatible.

Supports: PostgreSQL, MySQL 8+, SQLite.

Key design decisions:
  - String primary keys (uuid hex) — no database-specific sequences.
  - Status stored as a plain string column; the state machine lives in
    core/lifecycle.py, not in a database enum.
  - Composite (status, send_at) index backs the due-job claim query.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, BigInteger, DateTime, Text, Index
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from models.schemas import NotificationJob, new_job_id, utcnow


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


# ──────────────────────────────────────────────────────────────
#  Notification Jobs
# ──────────────────────────────────────────────────────────────

class NotificationJobRow(Base):
    __tablename__ = "notification_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_job_id)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    user_name: Mapped[str] = mapped_column(String(256), nullable=False)
    recipient: Mapped[str] = mapped_column(String(320), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    template_key: Mapped[str] = mapped_column(String(100), nullable=False)
    send_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    payload: Mapped[str] = mapped_column(Text, default="{}")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_status_sendat", "status", "send_at"),
    )

    def to_job(self) -> NotificationJob:
        return NotificationJob(
            id=self.id, user_id=self.user_id, user_name=self.user_name,
            recipient=self.recipient, type=self.type,
            template_key=self.template_key, send_at=self.send_at,
            status=self.status, payload=self.payload or "{}",
            created_at=self.created_at, updated_at=self.updated_at,
        )

    @classmethod
    def from_job(cls, job: NotificationJob) -> NotificationJobRow:
        return cls(
            id=job.id, user_id=job.user_id, user_name=job.user_name,
            recipient=job.recipient, type=job.type.value,
            template_key=job.template_key, send_at=job.send_at,
            status=job.status.value, payload=job.payload,
            created_at=job.created_at, updated_at=job.updated_at,
        )


# ──────────────────────────────────────────────────────────────
#  Templates
# ──────────────────────────────────────────────────────────────

class TemplateRow(Base):
    __tablename__ = "templates"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_job_id)
    key_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")   # with {{placeholders}}
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
