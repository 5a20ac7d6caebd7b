"""
Queue Publisher — bridges newly created jobs onto the message queue.

enqueue():  PENDING → QUEUED, then send with the delay until send_at,
            clamped to the queue maximum. A failed send reverts the job to
            PENDING so the database dispatch loop picks it up instead.
redefer():  for a message that surfaced before its job was due, publish a
            fresh message with the remaining (clamped) delay, then delete
            the received one.
"""
from __future__ import annotations

import math
import structlog
from datetime import datetime
from typing import Callable

from job_queue.message_queue import MessageQueue, QueueMessage, ReceivedMessage
from database.store_base import BaseJobStore
from models.schemas import JobStatus, NotificationJob, utcnow

logger = structlog.get_logger()


class QueuePublisher:

    def __init__(
        self,
        queue: MessageQueue,
        store: BaseJobStore,
        max_delay_seconds: int = 900,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.queue = queue
        self.store = store
        self.max_delay_seconds = max_delay_seconds
        self._clock = clock

    def compute_delay(self, send_at: datetime, now: datetime = None) -> int:
        """Seconds until send_at, rounded up and clamped to [0, max_delay_seconds]."""
        remaining = (send_at - (now or self._clock())).total_seconds()
        if remaining <= 0:
            return 0
        return min(int(math.ceil(remaining)), self.max_delay_seconds)

    async def enqueue(self, job: NotificationJob) -> bool:
        """Returns True when the job is QUEUED with a message in flight."""
        moved = await self.store.transition(job.id, [JobStatus.PENDING], JobStatus.QUEUED)
        if not moved:
            logger.warning("enqueue_skipped_not_pending", job_id=job.id)
            return False

        now = self._clock()
        delay = self.compute_delay(job.send_at, now)
        if (job.send_at - now).total_seconds() > self.max_delay_seconds:
            logger.info("queue_delay_clamped", job_id=job.id, max_delay_s=self.max_delay_seconds,
                        send_at=job.send_at.isoformat())

        try:
            message_id = await self.queue.send(QueueMessage.from_job(job).to_body(), delay_seconds=delay)
        except Exception as e:
            logger.error("enqueue_failed", job_id=job.id, error=str(e))
            await self.store.transition(job.id, [JobStatus.QUEUED], JobStatus.PENDING)
            return False

        logger.info("job_enqueued", job_id=job.id, message_id=message_id, delay_s=delay)
        return True

    async def redefer(self, job: NotificationJob, message: QueueMessage, received: ReceivedMessage) -> bool:
        delay = self.compute_delay(job.send_at)
        successor = QueueMessage.from_job(
            job,
            retry_count=message.retry_count + 1,
            original_message_id=message.original_message_id or received.message_id,
        )
        try:
            await self.queue.send(successor.to_body(), delay_seconds=delay)
        except Exception as e:
            # The received message reappears after its visibility timeout.
            logger.error("redefer_failed", job_id=job.id, error=str(e))
            return False

        await self.queue.delete(received.receipt_handle)
        logger.info("job_redeferred", job_id=job.id, delay_s=delay, retry_count=successor.retry_count)
        return True
