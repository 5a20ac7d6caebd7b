"""
End-to-end pipeline tests through NotificationRuntime.

Covers:
  - Database dispatch mode on SQLite: create → PENDING → claim → COMPLETED
  - Queue mode on the in-memory queue: create → QUEUED → message → COMPLETED
  - Background loops delivering without manual cycles
  - Permanent failures ending FAILED
"""
import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from channels.base import PermanentDeliveryError
from core.runtime import NotificationRuntime, build_registry
from config.settings import ChannelConfig
from models.schemas import ChannelType, CreateNotificationRequest, JobStatus, utcnow


def _request(send_in: timedelta = timedelta(seconds=-1), **overrides) -> CreateNotificationRequest:
    fields = dict(
        user_id=1,
        type=ChannelType.EMAIL,
        user_name="Asha",
        recipient="asha@example.com",
        template_key="welcome",
        send_at=utcnow() + send_in,
        data={"name": "Asha"},
    )
    fields.update(overrides)
    return CreateNotificationRequest(**fields)


async def _wait_for_status(runtime, job_id, status, timeout=3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        job = await runtime.store.get_job(job_id)
        if job.status == status:
            return job
        await asyncio.sleep(0.02)
    return await runtime.store.get_job(job_id)


@pytest_asyncio.fixture
async def sqlite_runtime(settings, registry, tmp_path):
    settings.database.store_backend = "sql"
    settings.database.url = f"sqlite:///{tmp_path / 'e2e.db'}"
    runtime = NotificationRuntime(settings, registry=registry)
    await runtime.start(run_loops=False)
    await runtime.service.upsert_template("welcome", "Hello {{name}}, welcome aboard!")
    yield runtime
    await runtime.stop()


@pytest_asyncio.fixture
async def queue_runtime(settings, job_store, template_store, registry):
    settings.queue.enabled = True
    runtime = NotificationRuntime(settings, store=job_store, template_store=template_store, registry=registry)
    await runtime.start(run_loops=False)
    yield runtime
    await runtime.stop()


class TestDatabaseDispatch:
    @pytest.mark.asyncio
    async def test_due_job_completed(self, sqlite_runtime, adapters):
        [created] = await sqlite_runtime.service.create_jobs([_request()])
        assert created.status == JobStatus.PENDING

        stats = await sqlite_runtime.dispatcher.poll_cycle()
        assert stats["claimed"] == 1
        await sqlite_runtime.pool.join()

        job = await sqlite_runtime.service.get_job(created.id)
        assert job.status == JobStatus.COMPLETED
        assert adapters[ChannelType.EMAIL].calls == [(created.id, "Hello Asha, welcome aboard!")]

    @pytest.mark.asyncio
    async def test_future_and_cancelled_jobs_untouched(self, sqlite_runtime, adapters):
        future, cancelled = await sqlite_runtime.service.create_jobs([
            _request(send_in=timedelta(hours=1)),
            _request(),
        ])
        await sqlite_runtime.service.cancel_job(cancelled.id)

        assert (await sqlite_runtime.dispatcher.poll_cycle())["claimed"] == 0
        assert (await sqlite_runtime.service.get_job(future.id)).status == JobStatus.PENDING
        assert (await sqlite_runtime.service.get_job(cancelled.id)).status == JobStatus.CANCELLED
        assert adapters[ChannelType.EMAIL].calls == []

    @pytest.mark.asyncio
    async def test_permanent_failure(self, sqlite_runtime, adapters):
        adapters[ChannelType.SMS].outcomes = [PermanentDeliveryError("invalid number", "sms")]
        [created] = await sqlite_runtime.service.create_jobs([
            _request(type=ChannelType.SMS, recipient="+1000"),
        ])
        await sqlite_runtime.dispatcher.poll_cycle()
        await sqlite_runtime.pool.join()
        assert (await sqlite_runtime.service.get_job(created.id)).status == JobStatus.FAILED


class TestQueueDispatch:
    @pytest.mark.asyncio
    async def test_created_job_is_queued_then_delivered(self, queue_runtime, adapters):
        [created] = await queue_runtime.service.create_jobs([_request()])
        assert created.status == JobStatus.QUEUED
        assert queue_runtime.queue.total_messages == 1

        stats = await queue_runtime.queue_loop.poll_cycle()
        assert stats["submitted"] == 1
        await queue_runtime.pool.join()

        assert (await queue_runtime.service.get_job(created.id)).status == JobStatus.COMPLETED
        assert queue_runtime.queue.total_messages == 0
        assert len(adapters[ChannelType.EMAIL].calls) == 1

    @pytest.mark.asyncio
    async def test_queued_job_not_claimed_by_dispatcher_until_stale(self, queue_runtime):
        [created] = await queue_runtime.service.create_jobs([_request()])
        assert (await queue_runtime.dispatcher.poll_cycle())["claimed"] == 0
        assert (await queue_runtime.service.get_job(created.id)).status == JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_health_reports_queue(self, queue_runtime):
        await queue_runtime.service.create_jobs([_request()])
        health = await queue_runtime.health()
        assert health["queue_length"] == 1
        assert health["worker_pool"]["workers"] == queue_runtime.settings.worker_pool.workers


class TestBackgroundLoops:
    @pytest.mark.asyncio
    async def test_loops_deliver_without_manual_cycles(self, settings, job_store, template_store, registry):
        settings.queue.enabled = True
        runtime = NotificationRuntime(settings, store=job_store, template_store=template_store, registry=registry)
        await runtime.start()
        try:
            created = await runtime.service.create_jobs([_request(), _request(type=ChannelType.PUSH, recipient="tok")])
            for resp in created:
                job = await _wait_for_status(runtime, resp.id, JobStatus.COMPLETED)
                assert job.status == JobStatus.COMPLETED
            assert runtime.dispatcher.running and runtime.queue_loop.running
        finally:
            await runtime.stop()
        assert not runtime.dispatcher.running


def test_disabled_channel_not_registered(settings):
    settings.channels["sms"] = ChannelConfig(enabled=False)
    registry = build_registry(settings)
    assert set(registry.get_available()) == {ChannelType.EMAIL, ChannelType.PUSH}
