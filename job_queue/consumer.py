"""
Queue Poll Loop — pulls notification messages from the queue and hands
due jobs to the worker pool.

Per received message:

  ┌───────────┐ bad body  ┌────────────────────────────┐
  │  decode   │──────────▶│ log, keep (redelivered)     │
  └─────┬─────┘           └────────────────────────────┘
        ▼
  ┌───────────┐ missing / terminal ┌────────┐
  │ load job  │───────────────────▶│ delete │
  └─────┬─────┘                    └────────┘
        │ SENDING → leave (another path owns it)
        │ not yet due → redefer (new delayed message, delete old)
        ▼
  ┌───────────┐ pool full  ┌─────────────────────────────┐
  │  submit   │───────────▶│ leave (visibility timeout)  │
  └─────┬─────┘            └─────────────────────────────┘
        ▼
  worker: claim (PENDING/QUEUED → SENDING) → process → delete

Delivery is at-least-once: a message is deleted only after its job has a
terminal status.
"""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Callable

from pydantic import ValidationError

from core.discovery import DiscoveryLoop
from core.errors import WorkerPoolClosedError, WorkerPoolFullError
from core.lifecycle import CLAIMABLE_STATUSES
from core.processor import JobProcessor
from core.worker_pool import WorkerPool
from database.store_base import BaseJobStore
from job_queue.message_queue import MessageQueue, QueueMessage, ReceivedMessage
from job_queue.publisher import QueuePublisher
from models.schemas import JobStatus, utcnow

logger = structlog.get_logger()


class QueuePollLoop(DiscoveryLoop):
    """
    Usage:
        loop = QueuePollLoop(queue, store, processor, publisher, pool)
        await loop.start()      # background task
        await loop.stop()
    """

    name = "queue_poll_loop"

    def __init__(
        self,
        queue: MessageQueue,
        store: BaseJobStore,
        processor: JobProcessor,
        publisher: QueuePublisher,
        pool: WorkerPool,
        poll_interval_s: float = 10.0,
        max_messages: int = 10,
        wait_seconds: int = 10,
        visibility_timeout: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(pool, poll_interval_s)
        self.queue = queue
        self.store = store
        self.processor = processor
        self.publisher = publisher
        self.max_messages = max_messages
        self.wait_seconds = wait_seconds
        self.visibility_timeout = visibility_timeout
        self._clock = clock

    async def poll_cycle(self) -> dict[str, int]:
        """
        Returns counts: {"received", "submitted", "deleted", "redeferred",
        "left", "invalid"}
        """
        stats = {"received": 0, "submitted": 0, "deleted": 0, "redeferred": 0, "left": 0, "invalid": 0}

        messages = await self.queue.receive(
            max_messages=self.max_messages,
            wait_seconds=self.wait_seconds,
            visibility_timeout=self.visibility_timeout,
        )
        stats["received"] = len(messages)

        for received in messages:
            try:
                outcome = await self.handle_message(received)
            except Exception as e:
                logger.error("queue_message_error", message_id=received.message_id, error=str(e))
                outcome = "left"
            stats[outcome] += 1

        if messages:
            logger.info("queue_cycle_complete", **stats)
        return stats

    async def handle_message(self, received: ReceivedMessage) -> str:
        try:
            message = QueueMessage.from_body(received.body)
        except (ValidationError, ValueError) as e:
            logger.error("queue_message_invalid", message_id=received.message_id, error=str(e))
            return "invalid"

        job = await self.store.get_job(message.job_id)
        if job is None:
            logger.warning("queued_job_not_found", job_id=message.job_id)
            await self.queue.delete(received.receipt_handle)
            return "deleted"

        if job.status.is_terminal:
            logger.info("queued_job_already_terminal", job_id=job.id, status=job.status.value)
            await self.queue.delete(received.receipt_handle)
            return "deleted"

        if job.status == JobStatus.SENDING:
            logger.info("queued_job_in_progress", job_id=job.id)
            return "left"

        if not job.is_due(self._clock()):
            redeferred = await self.publisher.redefer(job, message, received)
            return "redeferred" if redeferred else "left"

        try:
            self.pool.submit(self._process_message, job.id, received)
        except (WorkerPoolFullError, WorkerPoolClosedError) as e:
            logger.warning("queue_submission_deferred", job_id=job.id, error=str(e))
            return "left"
        return "submitted"

    async def _process_message(self, job_id: str, received: ReceivedMessage) -> None:
        status = await self.processor.claim_and_process(job_id, CLAIMABLE_STATUSES)
        if status is None:
            current = await self.store.get_job(job_id)
            if current is None or current.status.is_terminal:
                await self.queue.delete(received.receipt_handle)
            return

        await self.queue.delete(received.receipt_handle)
        logger.debug("queue_message_acked", job_id=job_id, status=status.value)
