"""Tests for the migration script."""
import pytest

from database.session import create_engine_for_url, create_session_factory
from database.store import SqlTemplateStore
from scripts.migrate_db import load_seed_templates, run_migration


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'migrate.db'}"


class TestMigration:
    @pytest.mark.asyncio
    async def test_check_reports_missing_tables(self, db_url, capsys):
        missing = await run_migration(check_only=True, engine=create_engine_for_url(db_url))
        assert missing == ["notification_jobs", "templates"]
        assert "Tables MISSING" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_create_then_check(self, db_url):
        assert await run_migration(engine=create_engine_for_url(db_url)) == []
        assert await run_migration(check_only=True, engine=create_engine_for_url(db_url)) == []

    @pytest.mark.asyncio
    async def test_seed_templates(self, db_url, tmp_path):
        seed = tmp_path / "templates.yaml"
        seed.write_text('welcome: "Hello {{name}}"\nreminder: "At {{time}}"\n')

        await run_migration(seed_path=str(seed), engine=create_engine_for_url(db_url))

        engine = create_engine_for_url(db_url)
        try:
            store = SqlTemplateStore(create_session_factory(engine))
            assert await store.list_templates() == {"welcome": "Hello {{name}}", "reminder": "At {{time}}"}
        finally:
            await engine.dispose()


def test_seed_file_must_be_mapping(tmp_path):
    seed = tmp_path / "bad.yaml"
    seed.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        load_seed_templates(str(seed))
