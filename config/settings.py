"""
Configuration loader for the notification scheduler.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./notifications.db"         # postgresql:// | mysql:// | sqlite://
    store_backend: str = "memory"                      # "sql" | "memory"
    echo: bool = False


@dataclass
class SchedulerConfig:
    enabled: bool = True
    poll_interval_seconds: float = 60.0
    batch_size: int = 50
    # QUEUED jobs overdue by this long are claimed by the database poller too.
    # 0 disables the fallback.
    queued_fallback_seconds: float = 900.0


@dataclass
class WorkerPoolConfig:
    workers: int = 10
    queue_capacity: int = 100


@dataclass
class QueueConfig:
    enabled: bool = False
    backend: str = "memory"             # "memory" for dev, "sqs" for production
    queue_name: str = "notification-queue"
    region: str = "us-east-1"
    access_key_id: str = ""
    secret_access_key: str = ""
    endpoint_url: str = ""              # e.g. localstack
    poll_interval_seconds: float = 10.0
    max_messages: int = 10
    wait_seconds: int = 10              # long-poll wait per receive
    visibility_timeout: int = 30
    max_delay_seconds: int = 900        # SQS DelaySeconds upper bound


@dataclass
class SenderConfig:
    max_concurrent: int = 5
    permit_timeout_seconds: float = 30.0
    pacing_delay_seconds: float = 0.0
    max_attempts: int = 3
    retry_delay_seconds: float = 2.0
    transient_markers: list[str] = field(default_factory=lambda: [
        "temporary", "try again", "timeout", "timed out", "unavailable",
    ])
    rate_limited_channels: list[str] = field(default_factory=lambda: ["email"])


@dataclass
class TemplateConfig:
    cache_ttl_seconds: float = 300.0
    fallback_message: str = "Hi, this is notification for template {key}"


@dataclass
class ChannelConfig:
    enabled: bool = True
    credentials: dict[str, Any] = field(default_factory=dict)


@dataclass
class Settings:
    app_name: str = "NotificationScheduler"
    debug: bool = False
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    worker_pool: WorkerPoolConfig = field(default_factory=WorkerPoolConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    sender: SenderConfig = field(default_factory=SenderConfig)
    templates: TemplateConfig = field(default_factory=TemplateConfig)
    channels: dict[str, ChannelConfig] = field(default_factory=dict)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """
    Replace ${VAR_NAME} and ${VAR_NAME:-default} patterns with environment
    variable values. Unset variables without a default become empty strings,
    so unconfigured transports stay in simulation mode.
    """
    pattern = re.compile(r'\$\{(\w+)(?::-([^}]*))?\}')
    def replacer(match):
        var_name, default = match.group(1), match.group(2)
        return os.environ.get(var_name, default or "")
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _merge(section: Any, raw: dict[str, Any]) -> Any:
    """Return a copy of a dataclass section with known keys overridden from raw."""
    values = {
        name: raw[name]
        for name in section.__dataclass_fields__
        if name in raw
    }
    return type(section)(**{**section.__dict__, **values})


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "NOTIFY_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)

        if "database" in raw:
            settings.database = _merge(settings.database, raw["database"])
        if "scheduler" in raw:
            settings.scheduler = _merge(settings.scheduler, raw["scheduler"])
        if "worker_pool" in raw:
            settings.worker_pool = _merge(settings.worker_pool, raw["worker_pool"])
        if "queue" in raw:
            settings.queue = _merge(settings.queue, raw["queue"])
        if "sender" in raw:
            settings.sender = _merge(settings.sender, raw["sender"])
        if "templates" in raw:
            settings.templates = _merge(settings.templates, raw["templates"])

        if "channels" in raw:
            for ch_name, ch_data in (raw["channels"] or {}).items():
                ch_data = ch_data or {}
                settings.channels[ch_name] = ChannelConfig(
                    enabled=ch_data.get("enabled", True),
                    credentials=ch_data.get("credentials", {}),
                )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings
    _settings = None
