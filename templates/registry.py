"""
Template Service — cache-through reads of the template store.

Lookups are cached per key for `ttl_seconds`; misses are cached too so a
missing template does not hit the store on every job. There is no explicit
invalidation beyond `invalidate()` and the TTL.
"""
from __future__ import annotations

import time
import structlog
from typing import Optional

from database.store_base import BaseTemplateStore
from models.schemas import NotificationJob
from templates.renderer import parse_payload, render

logger = structlog.get_logger()

DEFAULT_FALLBACK = "Hi, this is notification for template {key}"


class TemplateService:

    def __init__(
        self,
        store: BaseTemplateStore,
        ttl_seconds: float = 300.0,
        fallback_message: str = DEFAULT_FALLBACK,
    ):
        self.store = store
        self.ttl = ttl_seconds
        self.fallback_message = fallback_message
        self._cache: dict[str, tuple[float, Optional[str]]] = {}   # key → (expires_at, content)

    async def get_template_content(self, key: str) -> Optional[str]:
        now = time.monotonic()
        cached = self._cache.get(key)
        if cached and cached[0] > now:
            return cached[1]

        content = await self.store.get_template(key)
        self._cache[key] = (now + self.ttl, content)
        return content

    def invalidate(self, key: str = None) -> None:
        if key is None:
            self._cache.clear()
        else:
            self._cache.pop(key, None)

    async def upsert_template(self, key: str, content: str) -> None:
        await self.store.upsert_template(key, content)
        self.invalidate(key)
        logger.info("template_upserted", key=key)

    async def list_templates(self) -> dict[str, str]:
        return await self.store.list_templates()

    async def render_job(self, job: NotificationJob) -> str:
        """
        Final message text for a job. Never raises: a missing template or a
        failing template store falls back to a generic message.
        """
        try:
            content = await self.get_template_content(job.template_key)
        except Exception as e:
            logger.error("template_lookup_failed", key=job.template_key, error=str(e))
            content = None

        if content is None:
            logger.warning("template_not_found", key=job.template_key, job_id=job.id)
            content = self.fallback_message.format(key=job.template_key)

        return render(content, parse_payload(job.payload))
