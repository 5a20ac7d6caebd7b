"""
SMS Channel Adapter — Twilio-style SMS messaging over REST.

Provides:
- GSM-7 vs Unicode detection for accurate segment counting
- Automatic message truncation to max segment limit
- HTTP failure classification (429/5xx/transport → transient, other 4xx → permanent)
- Simulated sends when no account is configured (development)
"""
from __future__ import annotations

import uuid
import structlog
from typing import Any, Optional

import httpx

from models.schemas import ChannelType, NotificationJob
from channels.base import ChannelAdapter, ChannelError, PermanentDeliveryError

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  GSM-7 CHARACTER SET & SEGMENT COUNTING
# ══════════════════════════════════════════════════════════════

_GSM7_CHARS = set(
    "@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞÆæßÉ !\"#¤%&'()*+,-./0123456789:;<=>?"
    "¡ABCDEFGHIJKLMNOPQRSTUVWXYZÄÖÑÜ§¿abcdefghijklmnopqrstuvwxyzäöñüà"
)

# Extended GSM-7 (two septets each)
_GSM7_EXTENDED = set("^{}[]~|\\€")


def is_gsm7(text: str) -> bool:
    return all(c in _GSM7_CHARS or c in _GSM7_EXTENDED for c in text)


def segment_count(text: str) -> int:
    """
    GSM-7: 160 chars single / 153 per segment.
    Unicode: 70 chars single / 67 per segment.
    """
    if not text:
        return 0

    if is_gsm7(text):
        char_count = sum(2 if c in _GSM7_EXTENDED else 1 for c in text)
        if char_count <= 160:
            return 1
        return (char_count + 152) // 153
    if len(text) <= 70:
        return 1
    return (len(text) + 66) // 67


def truncate_to_segments(content: str, max_segments: int) -> str:
    if segment_count(content) <= max_segments:
        return content
    per_segment = 153 if is_gsm7(content) else 67
    return content[: per_segment * max_segments - 3] + "..."


# ══════════════════════════════════════════════════════════════
#  SMS ADAPTER
# ══════════════════════════════════════════════════════════════

class SMSAdapter(ChannelAdapter):
    """
    SMS adapter posting to the Twilio Messages API.

    Config keys: account_sid, auth_token, from_number, max_segments, base_url.
    """

    channel_type = ChannelType.SMS

    BASE_URL = "https://api.twilio.com/2010-04-01/Accounts"

    def __init__(self, transport: httpx.AsyncBaseTransport = None):
        super().__init__()
        self._account_sid: str = ""
        self._auth_token: str = ""
        self._from_number: str = ""
        self._max_segments: int = 3
        self._base_url: str = self.BASE_URL
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def initialize(self, config: dict[str, Any]) -> None:
        self._config = config
        self._account_sid = config.get("account_sid", "")
        self._auth_token = config.get("auth_token", "")
        self._from_number = config.get("from_number", "")
        self._max_segments = int(config.get("max_segments") or 3)
        self._base_url = config.get("base_url") or self.BASE_URL
        self._initialized = True
        if not self._account_sid:
            logger.warning("sms_provider_not_configured", mode="simulated")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                auth=(self._account_sid, self._auth_token),
                timeout=httpx.Timeout(30.0, connect=10.0),
                transport=self._transport,
            )
        return self._client

    # ── Send ──────────────────────────────────────────────────

    async def _do_send(self, job: NotificationJob, content: str) -> dict[str, Any]:
        if not job.recipient:
            raise PermanentDeliveryError("No SMS number", "sms")

        content = truncate_to_segments(content, self._max_segments)
        segments = segment_count(content)

        if not self._account_sid:
            msg_sid = f"SM{uuid.uuid4().hex}"
            logger.info("sms_simulated", to=job.recipient, segments=segments, job_id=job.id)
            return {"status": "simulated", "channel_message_id": msg_sid, "segments": segments}

        client = await self._get_client()
        url = f"{self._base_url}/{self._account_sid}/Messages.json"
        try:
            resp = await client.post(
                url, data={"From": self._from_number, "To": job.recipient, "Body": content},
            )
        except httpx.TransportError as e:
            raise ChannelError(f"SMS transport error: {e}", "sms", retryable=True) from e

        if resp.status_code == 429 or resp.status_code >= 500:
            logger.warning("sms_api_error", status=resp.status_code, body=resp.text[:500])
            raise ChannelError(f"SMS provider unavailable ({resp.status_code})", "sms", retryable=True)
        if resp.status_code >= 400:
            logger.error("sms_api_error", status=resp.status_code, body=resp.text[:500])
            raise PermanentDeliveryError(f"SMS rejected ({resp.status_code}): {resp.text[:200]}", "sms")

        try:
            body = resp.json()
        except ValueError:
            body = {}
        logger.info("sms_sent", to=job.recipient, segments=segments, msg_sid=body.get("sid", ""))
        return {
            "status": body.get("status", "queued"),
            "channel_message_id": body.get("sid", ""),
            "segments": segments,
        }

    async def shutdown(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
