"""
Core data models for the notification scheduler.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_job_id() -> str:
    return uuid.uuid4().hex[:16]


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class ChannelType(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    QUEUED = "QUEUED"
    SENDING = "SENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


# ──────────────────────────────────────────────────────────────
#  Notification Job — the unit of work
# ──────────────────────────────────────────────────────────────

class NotificationJob(BaseModel):
    id: str = Field(default_factory=new_job_id)
    user_id: Optional[int] = None
    user_name: str
    recipient: str                            # email address, phone number or device token
    type: ChannelType
    template_key: str
    send_at: datetime
    status: JobStatus = JobStatus.PENDING
    payload: str = "{}"                       # JSON-serialized data mapping
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("send_at", "created_at", "updated_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def is_due(self, now: datetime = None) -> bool:
        return self.send_at <= (now or utcnow())


# ──────────────────────────────────────────────────────────────
#  API payloads
# ──────────────────────────────────────────────────────────────

class CreateNotificationRequest(BaseModel):
    user_id: Optional[int] = None
    type: ChannelType
    user_name: str = Field(min_length=1)
    recipient: str = Field(min_length=1)
    template_key: str = Field(min_length=1)
    send_at: datetime
    data: dict[str, Any] = {}

    @field_validator("send_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def to_job(self) -> NotificationJob:
        return NotificationJob(
            user_id=self.user_id,
            user_name=self.user_name,
            recipient=self.recipient,
            type=self.type,
            template_key=self.template_key,
            send_at=self.send_at,
            payload=json.dumps(self.data, default=str),
        )


class NotificationResponse(BaseModel):
    id: str
    status: JobStatus
    send_at: datetime
    recipient: str
    user_name: str

    @classmethod
    def from_job(cls, job: NotificationJob) -> NotificationResponse:
        return cls(
            id=job.id,
            status=job.status,
            send_at=job.send_at,
            recipient=job.recipient,
            user_name=job.user_name,
        )


class TemplateRequest(BaseModel):
    content: str
