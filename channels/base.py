"""
Channel Adapters — Base infrastructure for all delivery channels.

Provides:
- ChannelError: structured error hierarchy (transient vs permanent)
- ChannelMetrics: per-channel send/fail/latency tracking
- ChannelAdapter: abstract base wrapping every send with metrics
- ChannelRegistry: closed ChannelType → adapter mapping, health checks
"""
from __future__ import annotations

import abc
import time
import structlog
from typing import Any

from models.schemas import ChannelType, NotificationJob

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class ChannelError(Exception):
    """Base exception for all channel operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


class PermanentDeliveryError(ChannelError):
    """The provider rejected the message; retrying will not help."""

    def __init__(self, message: str, channel: str = ""):
        super().__init__(message, channel, retryable=False)


class UnsupportedChannelError(ChannelError):
    def __init__(self, channel: str = ""):
        super().__init__(f"No adapter for channel {channel}", channel, retryable=False)


# ══════════════════════════════════════════════════════════════
#  CHANNEL METRICS
# ══════════════════════════════════════════════════════════════

class ChannelMetrics:
    """Tracks per-channel send, failure, and latency metrics."""

    def __init__(self, channel: ChannelType):
        self.channel = channel
        self.messages_sent: int = 0
        self.messages_failed: int = 0
        self._latencies: list[float] = []
        self._errors: list[str] = []

    def record_send(self, latency_ms: float = 0.0):
        self.messages_sent += 1
        if latency_ms > 0:
            self._latencies.append(latency_ms)
            del self._latencies[:-500]

    def record_failure(self, error: str = ""):
        self.messages_failed += 1
        if error:
            self._errors.append(error)
            del self._errors[:-50]

    @property
    def avg_latency_ms(self) -> float:
        return sum(self._latencies) / len(self._latencies) if self._latencies else 0.0

    @property
    def failure_rate(self) -> float:
        total = self.messages_sent + self.messages_failed
        return self.messages_failed / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "sent": self.messages_sent,
            "failed": self.messages_failed,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "failure_rate": round(self.failure_rate, 4),
            "recent_errors": self._errors[-10:],
        }


# ══════════════════════════════════════════════════════════════
#  CHANNEL ADAPTER — Abstract Base
# ══════════════════════════════════════════════════════════════

class ChannelAdapter(abc.ABC):
    """
    Base class for all channel adapters.

    Subclasses implement _do_send, which either returns a provider result
    dict or raises. Anything other than a ChannelError is wrapped into one
    so callers only ever see ChannelError subclasses. Retry policy lives in
    the sender, not here: one call to send() is one delivery attempt.
    """

    channel_type: ChannelType

    def __init__(self):
        self._initialized = False
        self._config: dict[str, Any] = {}
        self._metrics = ChannelMetrics(self.channel_type)

    # ── Abstract hooks ────────────────────────────────────────

    @abc.abstractmethod
    async def initialize(self, config: dict[str, Any]) -> None:
        ...

    @abc.abstractmethod
    async def _do_send(self, job: NotificationJob, content: str) -> dict[str, Any]:
        ...

    # ── Public send ───────────────────────────────────────────

    async def send(self, job: NotificationJob, content: str) -> dict[str, Any]:
        start = time.monotonic()
        try:
            result = await self._do_send(job, content)
        except ChannelError as e:
            self._metrics.record_failure(str(e))
            raise
        except Exception as e:
            self._metrics.record_failure(str(e))
            raise ChannelError(str(e), self.channel_type.value) from e

        latency = (time.monotonic() - start) * 1000
        self._metrics.record_send(latency)
        result["latency_ms"] = round(latency, 1)
        return result

    # ── Health ────────────────────────────────────────────────

    @property
    def metrics(self) -> ChannelMetrics:
        return self._metrics

    async def health_check(self) -> dict[str, Any]:
        return {
            "channel": self.channel_type.value,
            "initialized": self._initialized,
            "metrics": self._metrics.to_dict(),
        }

    async def shutdown(self) -> None:
        pass


# ══════════════════════════════════════════════════════════════
#  CHANNEL REGISTRY
# ══════════════════════════════════════════════════════════════

class ChannelRegistry:
    def __init__(self):
        self._adapters: dict[ChannelType, ChannelAdapter] = {}

    def register(self, adapter: ChannelAdapter):
        self._adapters[adapter.channel_type] = adapter

    def adapter_for(self, channel_type: Any) -> ChannelAdapter:
        """
        Adapter for a job's channel type. Every ChannelType member maps to
        exactly one adapter; anything else (or an unregistered member) raises
        UnsupportedChannelError rather than falling back to another channel.
        """
        if not isinstance(channel_type, ChannelType):
            try:
                channel_type = ChannelType(channel_type)
            except ValueError:
                raise UnsupportedChannelError(str(channel_type))

        adapter = self._adapters.get(channel_type)
        if adapter is None:
            raise UnsupportedChannelError(channel_type.value)
        return adapter

    def get_available(self) -> list[ChannelType]:
        return list(self._adapters.keys())

    async def health_check_all(self) -> dict[str, Any]:
        return {ch.value: await a.health_check() for ch, a in self._adapters.items()}

    async def initialize_all(self, configs: dict[str, Any]):
        for ch, adapter in self._adapters.items():
            try:
                ch_cfg = configs.get(ch.value.lower(), {})
                # ChannelConfig dataclass → dict so adapters can call .get()
                if hasattr(ch_cfg, "credentials"):
                    ch_cfg = ch_cfg.credentials
                await adapter.initialize(ch_cfg)
            except Exception as e:
                logger.error("channel_init_failed", channel=ch.value, error=str(e))

    async def shutdown_all(self):
        for a in self._adapters.values():
            try:
                await a.shutdown()
            except Exception as e:
                logger.warning("channel_shutdown_failed", channel=a.channel_type.value, error=str(e))
