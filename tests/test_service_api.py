"""
Tests for the notification service facade and the REST API.

The API tests run the real FastAPI app (lifespan included) against a
runtime with in-memory stores and recording channel adapters; background
loops are not started.
"""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from core.errors import EmptyBatchError, JobConflictError, JobNotFoundError
from core.runtime import NotificationRuntime
from core.service import NotificationService
from job_queue.message_queue import InMemoryMessageQueue
from job_queue.publisher import QueuePublisher
from models.schemas import ChannelType, CreateNotificationRequest, JobStatus, utcnow
from templates.registry import TemplateService


def _request_body(**overrides) -> dict:
    body = {
        "user_id": 7,
        "type": "EMAIL",
        "user_name": "Asha",
        "recipient": "asha@example.com",
        "template_key": "welcome",
        "send_at": (utcnow() + timedelta(hours=1)).isoformat(),
        "data": {"name": "Asha"},
    }
    body.update(overrides)
    return body


# ──────────────────────────────────────────────────────────────
#  Service
# ──────────────────────────────────────────────────────────────

class TestNotificationService:
    @pytest.fixture
    def service(self, job_store, template_store):
        return NotificationService(job_store, TemplateService(template_store))

    @pytest.mark.asyncio
    async def test_create_pending(self, service, job_store):
        [resp] = await service.create_jobs([CreateNotificationRequest(**_request_body())])
        assert resp.status == JobStatus.PENDING
        stored = await job_store.get_job(resp.id)
        assert stored.payload == '{"name": "Asha"}'
        assert stored.type == ChannelType.EMAIL

    @pytest.mark.asyncio
    async def test_create_with_publisher_queues(self, job_store, template_store):
        queue = InMemoryMessageQueue()
        service = NotificationService(
            job_store, TemplateService(template_store), QueuePublisher(queue, job_store),
        )
        responses = await service.create_jobs([
            CreateNotificationRequest(**_request_body()),
            CreateNotificationRequest(**_request_body(type="SMS", recipient="+15550100")),
        ])
        assert [r.status for r in responses] == [JobStatus.QUEUED, JobStatus.QUEUED]
        assert queue.total_messages == 2

    @pytest.mark.asyncio
    async def test_empty_batch(self, service):
        with pytest.raises(EmptyBatchError):
            await service.create_jobs([])

    @pytest.mark.asyncio
    async def test_get_missing(self, service):
        with pytest.raises(JobNotFoundError):
            await service.get_job("missing")

    @pytest.mark.asyncio
    async def test_cancel_only_pending(self, service, job_store, make_job):
        pending = await job_store.create_job(make_job())
        sending = await job_store.create_job(make_job(status=JobStatus.SENDING))

        assert (await service.cancel_job(pending.id)).status == JobStatus.CANCELLED
        with pytest.raises(JobConflictError) as exc_info:
            await service.cancel_job(sending.id)
        assert exc_info.value.status == "SENDING"
        with pytest.raises(JobConflictError):
            await service.cancel_job(pending.id)

    @pytest.mark.asyncio
    async def test_templates(self, service):
        await service.upsert_template("reminder", "See you at {{time}}")
        templates = await service.list_templates()
        assert templates["reminder"] == "See you at {{time}}"
        assert "welcome" in templates


# ──────────────────────────────────────────────────────────────
#  REST API
# ──────────────────────────────────────────────────────────────

@pytest.fixture
def client(settings, job_store, template_store, registry):
    runtime = NotificationRuntime(
        settings, store=job_store, template_store=template_store, registry=registry,
    )
    with TestClient(create_app(runtime, run_loops=False)) as test_client:
        yield test_client


class TestNotificationsApi:
    def test_create_returns_201(self, client):
        resp = client.post("/api/notifications", json=[_request_body(), _request_body(type="PUSH", recipient="tok")])
        assert resp.status_code == 201
        body = resp.json()
        assert len(body) == 2
        assert all(item["status"] == "PENDING" for item in body)
        assert {"id", "status", "send_at", "recipient", "user_name"} <= set(body[0])

    def test_empty_batch_is_400(self, client):
        assert client.post("/api/notifications", json=[]).status_code == 400

    @pytest.mark.parametrize("overrides", [
        {"type": "FAX"},
        {"recipient": ""},
        {"send_at": "not-a-date"},
    ])
    def test_invalid_request_is_422(self, client, overrides):
        assert client.post("/api/notifications", json=[_request_body(**overrides)]).status_code == 422

    def test_get_and_list(self, client):
        [created] = client.post("/api/notifications", json=[_request_body()]).json()

        resp = client.get(f"/api/notifications/{created['id']}")
        assert resp.status_code == 200
        job = resp.json()
        assert job["template_key"] == "welcome"
        assert job["type"] == "EMAIL"

        assert [j["id"] for j in client.get("/api/notifications").json()] == [created["id"]]
        assert client.get("/api/notifications", params={"status": "CANCELLED"}).json() == []

    def test_get_missing_is_404(self, client):
        assert client.get("/api/notifications/nope").status_code == 404

    def test_cancel_then_conflict(self, client):
        [created] = client.post("/api/notifications", json=[_request_body()]).json()

        resp = client.delete(f"/api/notifications/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["status"] == "CANCELLED"

        resp = client.delete(f"/api/notifications/{created['id']}")
        assert resp.status_code == 409
        assert resp.json()["status"] == "CANCELLED"

    def test_cancel_missing_is_404(self, client):
        assert client.delete("/api/notifications/nope").status_code == 404


class TestTemplatesApi:
    def test_put_and_list(self, client):
        resp = client.put("/api/templates/reminder", json={"content": "See you at {{time}}"})
        assert resp.status_code == 200
        assert resp.json() == {"key": "reminder", "status": "saved"}
        assert client.get("/api/templates").json()["reminder"] == "See you at {{time}}"


class TestHealthApi:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["queue_length"] is None
        assert set(body["channels"]) == {"EMAIL", "SMS", "PUSH"}
