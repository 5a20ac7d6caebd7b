"""
Notification Sender — delivers rendered content through a channel adapter.

For rate-limited channels (email by default) every delivery:
  1. takes one permit from a shared semaphore, waiting at most
     `permit_timeout_seconds` (no permit → RATE_LIMIT_TIMEOUT, no attempt made)
  2. sleeps `pacing_delay_seconds` before each attempt
  3. retries transient failures up to `max_attempts` with a fixed delay

Other channels get exactly one attempt. The sender reports a DeliveryResult
and never touches job state; the processor records the outcome.
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from tenacity import AsyncRetrying, RetryError, retry_if_exception, stop_after_attempt, wait_fixed

from channels.base import ChannelRegistry, PermanentDeliveryError, UnsupportedChannelError
from config.settings import SenderConfig
from models.schemas import NotificationJob

logger = structlog.get_logger()


class DeliveryKind(str, Enum):
    DELIVERED = "delivered"
    PERMANENT = "permanent"
    TRANSIENT_EXHAUSTED = "transient_exhausted"
    RATE_LIMIT_TIMEOUT = "rate_limit_timeout"
    UNSUPPORTED_CHANNEL = "unsupported_channel"


@dataclass
class DeliveryResult:
    success: bool
    attempts: int
    kind: DeliveryKind
    error: str = ""

    @classmethod
    def delivered(cls, attempts: int) -> "DeliveryResult":
        return cls(True, attempts, DeliveryKind.DELIVERED)


class NotificationSender:

    def __init__(
        self,
        registry: ChannelRegistry,
        config: SenderConfig = None,
        semaphore: asyncio.Semaphore = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.config = config or SenderConfig()
        self.permits = semaphore or asyncio.Semaphore(self.config.max_concurrent)
        self._sleep = sleep
        self._markers = [m.lower() for m in self.config.transient_markers]
        self._rate_limited = {c.lower() for c in self.config.rate_limited_channels}

    # ── Classification ────────────────────────────────────────

    def is_transient(self, exc: BaseException) -> bool:
        if isinstance(exc, (PermanentDeliveryError, UnsupportedChannelError)):
            return False
        if getattr(exc, "retryable", False):
            return True
        cause = exc.__cause__
        if isinstance(exc, (asyncio.TimeoutError, ConnectionError)) or \
                isinstance(cause, (asyncio.TimeoutError, ConnectionError)):
            return True
        message = str(exc).lower()
        return any(marker in message for marker in self._markers)

    def is_rate_limited(self, job: NotificationJob) -> bool:
        return job.type.value.lower() in self._rate_limited

    # ── Send ──────────────────────────────────────────────────

    async def send(self, job: NotificationJob, content: str) -> DeliveryResult:
        try:
            adapter = self.registry.adapter_for(job.type)
        except UnsupportedChannelError as e:
            logger.error("unsupported_channel", job_id=job.id, channel=str(job.type))
            return DeliveryResult(False, 0, DeliveryKind.UNSUPPORTED_CHANNEL, str(e))

        if not self.is_rate_limited(job):
            try:
                await adapter.send(job, content)
            except Exception as e:
                kind = DeliveryKind.TRANSIENT_EXHAUSTED if self.is_transient(e) else DeliveryKind.PERMANENT
                logger.warning("delivery_failed", job_id=job.id, channel=job.type.value,
                               kind=kind.value, error=str(e))
                return DeliveryResult(False, 1, kind, str(e))
            return DeliveryResult.delivered(1)

        if not await self._acquire_permit():
            logger.warning("permit_timeout", job_id=job.id,
                           timeout_s=self.config.permit_timeout_seconds)
            return DeliveryResult(False, 0, DeliveryKind.RATE_LIMIT_TIMEOUT,
                                  "Timed out waiting for a send permit")
        try:
            return await self._send_with_retry(adapter, job, content)
        finally:
            self.permits.release()

    async def _acquire_permit(self) -> bool:
        timeout = self.config.permit_timeout_seconds
        if timeout <= 0:
            # wait_for with a non-positive timeout cancels before acquiring
            if self.permits.locked():
                return False
            await self.permits.acquire()
            return True
        try:
            await asyncio.wait_for(self.permits.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _send_with_retry(self, adapter, job: NotificationJob, content: str) -> DeliveryResult:
        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(self.config.max_attempts, 1)),
            wait=wait_fixed(self.config.retry_delay_seconds),
            retry=retry_if_exception(self.is_transient),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    if self.config.pacing_delay_seconds > 0:
                        await self._sleep(self.config.pacing_delay_seconds)
                    await adapter.send(job, content)
        except RetryError as e:
            return DeliveryResult(False, attempts, DeliveryKind.TRANSIENT_EXHAUSTED, str(e))
        except Exception as e:
            if self.is_transient(e):
                logger.error("delivery_retries_exhausted", job_id=job.id, attempts=attempts, error=str(e))
                return DeliveryResult(False, attempts, DeliveryKind.TRANSIENT_EXHAUSTED, str(e))
            logger.error("delivery_permanent_failure", job_id=job.id, attempts=attempts, error=str(e))
            return DeliveryResult(False, attempts, DeliveryKind.PERMANENT, str(e))

        if attempts > 1:
            logger.info("delivery_succeeded_after_retry", job_id=job.id, attempts=attempts)
        return DeliveryResult.delivered(attempts)
