"""
Email Channel Adapter — SMTP delivery via aiosmtplib.

Provides:
- Plain-text notification body wrapped with a greeting and signature
- SMTP failure classification (4xx/connection → transient, 5xx/refused → permanent)
- Simulated sends when no SMTP host is configured (development)
"""
from __future__ import annotations

import uuid
import structlog
from email.mime.text import MIMEText
from typing import Any

import aiosmtplib

from models.schemas import ChannelType, NotificationJob
from channels.base import ChannelAdapter, ChannelError, PermanentDeliveryError

logger = structlog.get_logger()

DEFAULT_SUBJECT = "Notification from Smart Scheduler"
SIGNATURE = "-- Notification Service"


def build_body(user_name: str, content: str) -> str:
    return f"Hi {user_name},\n\n{content}\n\n{SIGNATURE}"


class EmailAdapter(ChannelAdapter):
    """
    SMTP email adapter.

    Config keys: smtp_host, smtp_port, username, password, from_email,
    subject, use_tls, start_tls, timeout.
    """

    channel_type = ChannelType.EMAIL

    def __init__(self):
        super().__init__()
        self._host: str = ""
        self._port: int = 587
        self._from_email: str = ""
        self._subject: str = DEFAULT_SUBJECT

    async def initialize(self, config: dict[str, Any]) -> None:
        self._config = config
        self._host = config.get("smtp_host", "")
        self._port = int(config.get("smtp_port") or 587)
        self._from_email = config.get("from_email") or "notifications@example.com"
        self._subject = config.get("subject") or DEFAULT_SUBJECT
        self._initialized = True
        if not self._host:
            logger.warning("email_smtp_not_configured", mode="simulated")

    def build_message(self, job: NotificationJob, content: str) -> MIMEText:
        msg = MIMEText(build_body(job.user_name, content), "plain", "utf-8")
        msg["Subject"] = self._subject
        msg["From"] = self._from_email
        msg["To"] = job.recipient
        msg["Message-ID"] = f"<{uuid.uuid4().hex}@{self._from_email.split('@')[-1]}>"
        return msg

    # ── Send ──────────────────────────────────────────────────

    async def _do_send(self, job: NotificationJob, content: str) -> dict[str, Any]:
        if not job.recipient:
            raise PermanentDeliveryError("No email address", "email")

        msg = self.build_message(job, content)

        if not self._host:
            logger.info("email_simulated", to=job.recipient, subject=self._subject, job_id=job.id)
            return {"status": "simulated", "channel_message_id": msg["Message-ID"], "to": job.recipient}

        try:
            errors, response = await aiosmtplib.send(
                msg,
                hostname=self._host,
                port=self._port,
                username=self._config.get("username") or None,
                password=self._config.get("password") or None,
                use_tls=bool(self._config.get("use_tls", False)),
                start_tls=self._config.get("start_tls"),
                timeout=float(self._config.get("timeout", 30)),
            )
        except (aiosmtplib.SMTPRecipientsRefused, aiosmtplib.SMTPRecipientRefused) as e:
            raise PermanentDeliveryError(f"Recipient refused: {e}", "email") from e
        except aiosmtplib.SMTPResponseException as e:
            if 400 <= e.code < 500:
                raise ChannelError(f"SMTP {e.code}: {e.message}", "email", retryable=True) from e
            raise PermanentDeliveryError(f"SMTP {e.code}: {e.message}", "email") from e
        except (
            aiosmtplib.SMTPConnectError,
            aiosmtplib.SMTPTimeoutError,
            aiosmtplib.SMTPServerDisconnected,
        ) as e:
            raise ChannelError(f"SMTP connection error: {e}", "email", retryable=True) from e
        except aiosmtplib.SMTPException as e:
            raise ChannelError(f"SMTP error: {e}", "email") from e
        except OSError as e:
            raise ChannelError(f"SMTP connection error: {e}", "email", retryable=True) from e

        if errors:
            raise PermanentDeliveryError(f"Recipient refused: {errors}", "email")

        logger.info("email_sent", to=job.recipient, subject=self._subject, job_id=job.id)
        return {
            "status": "sent",
            "channel_message_id": msg["Message-ID"],
            "to": job.recipient,
            "smtp_response": response,
        }
