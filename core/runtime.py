"""
Runtime — wires stores, channels, sender, worker pool and discovery loops
from Settings, and owns their start/stop order.

    start:  database tables → channel adapters → worker pool → queue
            → dispatch loop / queue poll loop
    stop:   loops → worker pool (drain) → queue → channels → database
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import asdict
from typing import Optional

from channels.base import ChannelRegistry
from channels.email_adapter import EmailAdapter
from channels.push_adapter import PushAdapter
from channels.sms_adapter import SMSAdapter
from config.settings import Settings, get_settings
from core.dispatcher import DispatchLoop
from core.processor import JobProcessor
from core.sender import NotificationSender
from core.service import NotificationService
from core.worker_pool import WorkerPool
from database.session import create_engine_for_url, create_session_factory, init_db
from database.store_base import BaseJobStore, BaseTemplateStore
from database.store_factory import create_store, create_template_store
from job_queue.consumer import QueuePollLoop
from job_queue.message_queue import MessageQueue, create_message_queue
from job_queue.publisher import QueuePublisher
from templates.registry import TemplateService

logger = structlog.get_logger()


def build_registry(settings: Settings) -> ChannelRegistry:
    """One adapter per enabled channel; a disabled channel is unsupported."""
    registry = ChannelRegistry()
    for adapter_cls in (EmailAdapter, SMSAdapter, PushAdapter):
        adapter = adapter_cls()
        cfg = settings.channels.get(adapter.channel_type.value.lower())
        if cfg is not None and not cfg.enabled:
            logger.info("channel_disabled", channel=adapter.channel_type.value)
            continue
        registry.register(adapter)
    return registry


class NotificationRuntime:

    def __init__(
        self,
        settings: Settings = None,
        store: BaseJobStore = None,
        template_store: BaseTemplateStore = None,
        queue: MessageQueue = None,
        registry: ChannelRegistry = None,
        semaphore: asyncio.Semaphore = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        self._engine = None
        if store is None or template_store is None:
            db_config = asdict(s.database)
            session_factory = None
            if s.database.store_backend == "sql":
                self._engine = create_engine_for_url(s.database.url, echo=s.database.echo or s.debug)
                session_factory = create_session_factory(self._engine)
            store = store or create_store(db_config, session_factory)
            template_store = template_store or create_template_store(db_config, session_factory)

        self.store = store
        self.template_store = template_store
        self.templates = TemplateService(
            template_store,
            ttl_seconds=s.templates.cache_ttl_seconds,
            fallback_message=s.templates.fallback_message,
        )
        self.registry = registry or build_registry(s)
        self.sender = NotificationSender(self.registry, s.sender, semaphore=semaphore)
        self.processor = JobProcessor(self.store, self.templates, self.sender)
        self.pool = WorkerPool(s.worker_pool.workers, s.worker_pool.queue_capacity)

        self.queue: Optional[MessageQueue] = None
        self.publisher: Optional[QueuePublisher] = None
        self.queue_loop: Optional[QueuePollLoop] = None
        if s.queue.enabled:
            self.queue = queue or create_message_queue(asdict(s.queue))
            self.publisher = QueuePublisher(self.queue, self.store, s.queue.max_delay_seconds)
            self.queue_loop = QueuePollLoop(
                self.queue, self.store, self.processor, self.publisher, self.pool,
                poll_interval_s=s.queue.poll_interval_seconds,
                max_messages=s.queue.max_messages,
                wait_seconds=s.queue.wait_seconds,
                visibility_timeout=s.queue.visibility_timeout,
            )

        self.dispatcher: Optional[DispatchLoop] = None
        if s.scheduler.enabled:
            self.dispatcher = DispatchLoop(
                self.store, self.processor, self.pool,
                poll_interval_s=s.scheduler.poll_interval_seconds,
                batch_size=s.scheduler.batch_size,
                queued_fallback_s=s.scheduler.queued_fallback_seconds if s.queue.enabled else 0,
            )

        self.service = NotificationService(self.store, self.templates, self.publisher)

    async def start(self, run_loops: bool = True) -> None:
        if self._engine is not None:
            await init_db(self._engine)
        await self.registry.initialize_all(self.settings.channels)
        await self.pool.start()
        if self.queue is not None:
            await self.queue.connect()
        if run_loops:
            if self.dispatcher is not None:
                await self.dispatcher.start()
            if self.queue_loop is not None:
                await self.queue_loop.start()
        logger.info(
            "runtime_started",
            dispatcher=self.dispatcher is not None,
            queue=self.queue is not None,
            channels=[c.value for c in self.registry.get_available()],
        )

    async def stop(self) -> None:
        if self.queue_loop is not None:
            await self.queue_loop.stop()
        if self.dispatcher is not None:
            await self.dispatcher.stop()
        await self.pool.stop()
        if self.queue is not None:
            await self.queue.close()
        await self.registry.shutdown_all()
        if self._engine is not None:
            await self._engine.dispose()
        logger.info("runtime_stopped")

    async def health(self) -> dict:
        queue_length = None
        if self.queue is not None:
            try:
                queue_length = await self.queue.queue_length()
            except Exception as e:
                logger.warning("queue_length_failed", error=str(e))
        return {
            "dispatcher": self.dispatcher.running if self.dispatcher else False,
            "queue_poller": self.queue_loop.running if self.queue_loop else False,
            "queue_length": queue_length,
            "worker_pool": self.pool.stats(),
            "channels": await self.registry.health_check_all(),
        }
