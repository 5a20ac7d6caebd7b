"""
Message Queue — SQS-style interface with AWS SQS and in-memory backends.

Semantics (both backends):
  send(body, delay_seconds)   message becomes visible after the delay
  receive(max, wait, vis)     long-poll; received messages are hidden for
                              `vis` seconds and reappear unless deleted
  delete(receipt_handle)      acknowledge; only the latest receipt is valid

Message Schema (JSON body):
  {
      "job_id":              notification job id,
      "user_id":             owning user (optional),
      "type":                EMAIL | SMS | PUSH,
      "template_key":        template to render,
      "user_name":           greeting name,
      "recipient":           address / number / device token,
      "payload":             JSON string of template data,
      "send_at":             ISO timestamp (UTC),
      "retry_count":         times this job has been re-deferred,
      "original_message_id": first message id in a re-defer chain,
  }
"""
from __future__ import annotations

import asyncio
import time
import uuid
import structlog
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import BaseModel, field_validator

from models.schemas import ChannelType, NotificationJob, as_utc

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Message Models
# ──────────────────────────────────────────────────────────────

class QueueMessage(BaseModel):
    """Body of a queue message; carries a snapshot of the job."""
    job_id: str
    user_id: Optional[int] = None
    type: ChannelType
    template_key: str
    user_name: str
    recipient: str
    payload: str = "{}"
    send_at: datetime
    retry_count: int = 0
    original_message_id: Optional[str] = None

    @field_validator("send_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @classmethod
    def from_job(cls, job: NotificationJob, **extra: Any) -> QueueMessage:
        return cls(
            job_id=job.id,
            user_id=job.user_id,
            type=job.type,
            template_key=job.template_key,
            user_name=job.user_name,
            recipient=job.recipient,
            payload=job.payload,
            send_at=job.send_at,
            **extra,
        )

    def to_body(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_body(cls, body: str) -> QueueMessage:
        return cls.model_validate_json(body)


@dataclass
class ReceivedMessage:
    message_id: str
    receipt_handle: str
    body: str
    receive_count: int = 1


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class MessageQueue(ABC):
    """Abstract message queue interface."""

    @abstractmethod
    async def connect(self):
        """Establish connection to the queue backend."""
        ...

    @abstractmethod
    async def close(self):
        """Gracefully shut down."""
        ...

    @abstractmethod
    async def get_queue_url(self) -> str:
        ...

    @abstractmethod
    async def send(self, body: str, delay_seconds: int = 0) -> str:
        """Publish a message body; returns the message id."""
        ...

    @abstractmethod
    async def receive(
        self, max_messages: int = 10, wait_seconds: int = 10, visibility_timeout: int = 30,
    ) -> list[ReceivedMessage]:
        ...

    @abstractmethod
    async def delete(self, receipt_handle: str) -> None:
        ...

    @abstractmethod
    async def queue_length(self) -> int:
        """Approximate number of messages currently visible."""
        ...


# ──────────────────────────────────────────────────────────────
#  AWS SQS Implementation
# ──────────────────────────────────────────────────────────────

class SqsMessageQueue(MessageQueue):
    """
    Production queue backed by AWS SQS via boto3.

    boto3 is synchronous, so every call runs in a worker thread. SQS caps
    DelaySeconds at 900, MaxNumberOfMessages at 10 and WaitTimeSeconds at 20.
    """

    def __init__(
        self,
        queue_name: str,
        region: str = "us-east-1",
        access_key_id: str = "",
        secret_access_key: str = "",
        endpoint_url: str = "",
        client: Any = None,
    ):
        self.queue_name = queue_name
        self.region = region
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._endpoint_url = endpoint_url
        self._client = client
        self._queue_url: str = ""

    async def connect(self):
        if self._client is None:
            import boto3
            kwargs: dict[str, Any] = {"region_name": self.region}
            if self._access_key_id:
                kwargs["aws_access_key_id"] = self._access_key_id
                kwargs["aws_secret_access_key"] = self._secret_access_key
            if self._endpoint_url:
                kwargs["endpoint_url"] = self._endpoint_url
            self._client = boto3.client("sqs", **kwargs)
        await self.get_queue_url()
        logger.info("sqs_queue_connected", queue=self.queue_name, url=self._queue_url)

    async def close(self):
        if self._client is not None and hasattr(self._client, "close"):
            await asyncio.to_thread(self._client.close)

    async def get_queue_url(self) -> str:
        if not self._queue_url:
            resp = await asyncio.to_thread(self._client.get_queue_url, QueueName=self.queue_name)
            self._queue_url = resp["QueueUrl"]
        return self._queue_url

    async def send(self, body: str, delay_seconds: int = 0) -> str:
        url = await self.get_queue_url()
        resp = await asyncio.to_thread(
            self._client.send_message,
            QueueUrl=url,
            MessageBody=body,
            DelaySeconds=int(min(max(delay_seconds, 0), 900)),
        )
        return resp["MessageId"]

    async def receive(
        self, max_messages: int = 10, wait_seconds: int = 10, visibility_timeout: int = 30,
    ) -> list[ReceivedMessage]:
        url = await self.get_queue_url()
        resp = await asyncio.to_thread(
            self._client.receive_message,
            QueueUrl=url,
            MaxNumberOfMessages=min(max(max_messages, 1), 10),
            WaitTimeSeconds=min(max(wait_seconds, 0), 20),
            VisibilityTimeout=visibility_timeout,
            AttributeNames=["ApproximateReceiveCount"],
        )
        return [
            ReceivedMessage(
                message_id=m["MessageId"],
                receipt_handle=m["ReceiptHandle"],
                body=m["Body"],
                receive_count=int(m.get("Attributes", {}).get("ApproximateReceiveCount", 1)),
            )
            for m in resp.get("Messages", [])
        ]

    async def delete(self, receipt_handle: str) -> None:
        url = await self.get_queue_url()
        await asyncio.to_thread(self._client.delete_message, QueueUrl=url, ReceiptHandle=receipt_handle)

    async def queue_length(self) -> int:
        url = await self.get_queue_url()
        resp = await asyncio.to_thread(
            self._client.get_queue_attributes,
            QueueUrl=url,
            AttributeNames=["ApproximateNumberOfMessages"],
        )
        return int(resp.get("Attributes", {}).get("ApproximateNumberOfMessages", 0))


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

@dataclass
class _StoredMessage:
    message_id: str
    body: str
    visible_at: float
    receipt_handle: str = ""
    receive_count: int = 0


class InMemoryMessageQueue(MessageQueue):
    """
    Development/test queue with SQS delay and visibility-timeout semantics.
    Single-process only, no persistence.
    """

    def __init__(self, queue_name: str = "notification-queue", clock: Callable[[], float] = time.monotonic):
        self.queue_name = queue_name
        self._clock = clock
        self._messages: dict[str, _StoredMessage] = {}     # message_id → message
        self._lock = asyncio.Lock()
        self.poll_granularity = 0.05

    async def connect(self):
        logger.info("inmemory_queue_connected", queue=self.queue_name)

    async def close(self):
        pass

    async def get_queue_url(self) -> str:
        return f"memory://{self.queue_name}"

    async def send(self, body: str, delay_seconds: int = 0) -> str:
        message_id = uuid.uuid4().hex
        async with self._lock:
            self._messages[message_id] = _StoredMessage(
                message_id=message_id,
                body=body,
                visible_at=self._clock() + max(delay_seconds, 0),
            )
        logger.debug("message_sent", queue=self.queue_name, message_id=message_id, delay_s=delay_seconds)
        return message_id

    async def _take_visible(self, max_messages: int, visibility_timeout: int) -> list[ReceivedMessage]:
        now = self._clock()
        batch: list[ReceivedMessage] = []
        async with self._lock:
            visible = sorted(
                (m for m in self._messages.values() if m.visible_at <= now),
                key=lambda m: m.visible_at,
            )
            for m in visible[:max_messages]:
                m.receipt_handle = uuid.uuid4().hex
                m.receive_count += 1
                m.visible_at = now + visibility_timeout
                batch.append(ReceivedMessage(m.message_id, m.receipt_handle, m.body, m.receive_count))
        return batch

    async def receive(
        self, max_messages: int = 10, wait_seconds: int = 10, visibility_timeout: int = 30,
    ) -> list[ReceivedMessage]:
        deadline = time.monotonic() + max(wait_seconds, 0)
        while True:
            batch = await self._take_visible(max_messages, visibility_timeout)
            remaining = deadline - time.monotonic()
            if batch or remaining <= 0:
                return batch
            await asyncio.sleep(min(self.poll_granularity, remaining))

    async def delete(self, receipt_handle: str) -> None:
        async with self._lock:
            for message_id, m in list(self._messages.items()):
                if m.receipt_handle and m.receipt_handle == receipt_handle:
                    del self._messages[message_id]
                    return
        logger.warning("message_delete_stale_receipt", queue=self.queue_name)

    async def queue_length(self) -> int:
        now = self._clock()
        return sum(1 for m in self._messages.values() if m.visible_at <= now)

    @property
    def total_messages(self) -> int:
        """Visible, delayed and in-flight messages together."""
        return len(self._messages)

    def peek_bodies(self) -> list[str]:
        return [m.body for m in self._messages.values()]


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

_instance: Optional[MessageQueue] = None


def create_message_queue(queue_config: dict[str, Any] = None) -> MessageQueue:
    """Factory: create the appropriate queue backend."""
    global _instance
    if _instance:
        return _instance

    config = queue_config or {}
    backend = config.get("backend", "memory")
    queue_name = config.get("queue_name", "notification-queue")

    if backend == "sqs":
        _instance = SqsMessageQueue(
            queue_name=queue_name,
            region=config.get("region", "us-east-1"),
            access_key_id=config.get("access_key_id", ""),
            secret_access_key=config.get("secret_access_key", ""),
            endpoint_url=config.get("endpoint_url", ""),
        )
    else:
        _instance = InMemoryMessageQueue(queue_name=queue_name)

    logger.info("message_queue_created", backend=backend, queue=queue_name)
    return _instance


def get_message_queue() -> MessageQueue:
    """Return the singleton queue instance."""
    global _instance
    if _instance is None:
        _instance = create_message_queue()
    return _instance


def reset_message_queue() -> None:
    global _instance
    _instance = None
