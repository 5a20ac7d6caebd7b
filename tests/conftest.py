"""Shared test fixtures for the notification scheduler."""
import pytest
from datetime import timedelta
from typing import Any

from channels.base import ChannelAdapter, ChannelRegistry
from config.settings import SenderConfig, Settings, reset_settings
from database.store_factory import reset_store
from database.store_memory import InMemoryJobStore, InMemoryTemplateStore
from job_queue.message_queue import reset_message_queue
from models.schemas import ChannelType, JobStatus, NotificationJob, utcnow


class RecordingAdapter(ChannelAdapter):
    """
    Test adapter. Each call pops the next scripted outcome: an exception to
    raise, or None for success. With an empty script every call succeeds.
    """

    def __init__(self, channel_type: ChannelType, outcomes: list = None):
        self.channel_type = channel_type
        super().__init__()
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[str, str]] = []

    async def initialize(self, config: dict[str, Any]) -> None:
        self._config = config
        self._initialized = True

    async def _do_send(self, job: NotificationJob, content: str) -> dict[str, Any]:
        self.calls.append((job.id, content))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if outcome is not None:
                raise outcome
        return {"status": "sent"}


class FakeClock:
    """Mutable clock usable wherever a `() -> value` clock is injected."""

    def __init__(self, value):
        self.value = value

    def __call__(self):
        return self.value

    def advance(self, delta):
        self.value = self.value + delta


@pytest.fixture(autouse=True)
def _reset_singletons():
    yield
    reset_store()
    reset_message_queue()
    reset_settings()


@pytest.fixture
def make_job():
    def _make(
        send_in: timedelta = timedelta(seconds=-1),
        channel: ChannelType = ChannelType.EMAIL,
        status: JobStatus = JobStatus.PENDING,
        template_key: str = "welcome",
        payload: str = '{"name": "Asha"}',
        **kwargs,
    ) -> NotificationJob:
        return NotificationJob(
            user_id=kwargs.pop("user_id", 42),
            user_name=kwargs.pop("user_name", "Asha"),
            recipient=kwargs.pop("recipient", "asha@example.com"),
            type=channel,
            template_key=template_key,
            send_at=kwargs.pop("send_at", utcnow() + send_in),
            status=status,
            payload=payload,
            **kwargs,
        )
    return _make


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def template_store() -> InMemoryTemplateStore:
    return InMemoryTemplateStore({"welcome": "Hello {{name}}, welcome aboard!"})


@pytest.fixture
def adapters() -> dict[ChannelType, RecordingAdapter]:
    return {ch: RecordingAdapter(ch) for ch in ChannelType}


@pytest.fixture
def registry(adapters) -> ChannelRegistry:
    reg = ChannelRegistry()
    for adapter in adapters.values():
        reg.register(adapter)
    return reg


@pytest.fixture
def sender_config() -> SenderConfig:
    return SenderConfig(
        max_concurrent=2,
        permit_timeout_seconds=0.2,
        pacing_delay_seconds=0.0,
        max_attempts=3,
        retry_delay_seconds=0.0,
    )


@pytest.fixture
def settings(sender_config) -> Settings:
    s = Settings()
    s.database.store_backend = "memory"
    s.scheduler.poll_interval_seconds = 0.05
    s.queue.backend = "memory"
    s.queue.wait_seconds = 0
    s.queue.poll_interval_seconds = 0.05
    s.sender = sender_config
    return s
