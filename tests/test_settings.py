"""Tests for YAML settings loading and env var substitution."""
import textwrap

import pytest

from config.settings import ChannelConfig, Settings, get_settings, load_settings


@pytest.fixture
def write_config(tmp_path):
    def _write(text: str) -> str:
        path = tmp_path / "settings.yaml"
        path.write_text(textwrap.dedent(text))
        return str(path)
    return _write


class TestLoadSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(str(tmp_path / "absent.yaml"))
        assert settings == Settings()
        assert settings.scheduler.poll_interval_seconds == 60.0
        assert settings.queue.max_delay_seconds == 900
        assert settings.sender.rate_limited_channels == ["email"]

    def test_sections_override_known_keys(self, write_config):
        settings = load_settings(write_config("""
            app_name: Notify
            scheduler:
              batch_size: 5
              not_a_setting: 1
            worker_pool:
              workers: 3
            sender:
              max_attempts: 7
        """))
        assert settings.app_name == "Notify"
        assert settings.scheduler.batch_size == 5
        assert settings.scheduler.poll_interval_seconds == 60.0
        assert not hasattr(settings.scheduler, "not_a_setting")
        assert settings.worker_pool.workers == 3
        assert settings.sender.max_attempts == 7

    def test_env_substitution(self, write_config, monkeypatch):
        monkeypatch.setenv("TEST_DB_URL", "postgresql://db/notify")
        monkeypatch.delenv("TEST_UNSET_VAR", raising=False)
        settings = load_settings(write_config("""
            database:
              url: "${TEST_DB_URL}"
            queue:
              queue_name: "${TEST_UNSET_VAR:-jobs}"
              access_key_id: "${TEST_UNSET_VAR}"
        """))
        assert settings.database.url == "postgresql://db/notify"
        assert settings.queue.queue_name == "jobs"
        assert settings.queue.access_key_id == ""

    def test_channels(self, write_config, monkeypatch):
        monkeypatch.setenv("TEST_SMTP_HOST", "mail.local")
        settings = load_settings(write_config("""
            channels:
              email:
                credentials:
                  smtp_host: "${TEST_SMTP_HOST}"
              sms:
                enabled: false
              push:
        """))
        assert settings.channels["email"] == ChannelConfig(enabled=True, credentials={"smtp_host": "mail.local"})
        assert settings.channels["sms"].enabled is False
        assert settings.channels["push"] == ChannelConfig()

    def test_config_path_from_env(self, write_config, monkeypatch):
        monkeypatch.setenv("NOTIFY_CONFIG", write_config("debug: true\n"))
        assert load_settings().debug is True
        assert get_settings().debug is True

    def test_bundled_settings_file(self, monkeypatch):
        monkeypatch.delenv("NOTIFY_CONFIG", raising=False)
        settings = load_settings()
        assert settings.database.store_backend == "sql"
        assert set(settings.channels) == {"email", "sms", "push"}
