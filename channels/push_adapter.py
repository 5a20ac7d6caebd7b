"""
Push Channel Adapter — device notifications through an HTTP push gateway.

The gateway receives `{"token", "title", "body", "data"}` as JSON with a
bearer API key. 429/5xx and transport errors are transient, other 4xx are
permanent.
"""
from __future__ import annotations

import uuid
import structlog
from typing import Any, Optional

import httpx

from models.schemas import ChannelType, NotificationJob
from channels.base import ChannelAdapter, ChannelError, PermanentDeliveryError

logger = structlog.get_logger()


class PushAdapter(ChannelAdapter):

    channel_type = ChannelType.PUSH

    def __init__(self, transport: httpx.AsyncBaseTransport = None):
        super().__init__()
        self._gateway_url: str = ""
        self._api_key: str = ""
        self._title: str = "Notification"
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def initialize(self, config: dict[str, Any]) -> None:
        self._config = config
        self._gateway_url = config.get("gateway_url", "")
        self._api_key = config.get("api_key", "")
        self._title = config.get("title") or "Notification"
        self._initialized = True
        if not self._gateway_url:
            logger.warning("push_gateway_not_configured", mode="simulated")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=httpx.Timeout(15.0, connect=5.0),
                transport=self._transport,
            )
        return self._client

    async def _do_send(self, job: NotificationJob, content: str) -> dict[str, Any]:
        if not job.recipient:
            raise PermanentDeliveryError("No device token", "push")

        if not self._gateway_url:
            logger.info("push_simulated", token=job.recipient[:12], job_id=job.id)
            return {"status": "simulated", "channel_message_id": uuid.uuid4().hex}

        client = await self._get_client()
        try:
            resp = await client.post(self._gateway_url, json={
                "token": job.recipient,
                "title": self._title,
                "body": content,
                "data": {"job_id": job.id, "template_key": job.template_key},
            })
        except httpx.TransportError as e:
            raise ChannelError(f"Push transport error: {e}", "push", retryable=True) from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise ChannelError(f"Push gateway unavailable ({resp.status_code})", "push", retryable=True)
        if resp.status_code >= 400:
            logger.error("push_api_error", status=resp.status_code, body=resp.text[:500])
            raise PermanentDeliveryError(f"Push rejected ({resp.status_code})", "push")

        try:
            body = resp.json()
        except ValueError:
            body = {}
        logger.info("push_sent", job_id=job.id)
        return {"status": "sent", "channel_message_id": body.get("id", "")}

    async def shutdown(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
