#!/usr/bin/env python3
"""
Database Migration — Create notification tables and optionally seed templates.

Usage:
    # Create/verify tables for the configured database:
    python scripts/migrate_db.py

    # Check status only (no changes):
    python scripts/migrate_db.py --check

    # Create tables, then upsert templates from a YAML mapping:
    python scripts/migrate_db.py --seed templates.yaml

Seed file format:
    welcome: "Hello {{name}}, welcome aboard!"
    reminder: "Your appointment is at {{time}}."
"""
import asyncio
import os
import sys
import argparse

import yaml

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def load_seed_templates(path: str) -> dict[str, str]:
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a mapping of template key to content")
    return {str(k): str(v) for k, v in raw.items()}


def _list_tables_sql(dialect: str) -> str:
    if dialect == "postgresql":
        return "SELECT tablename FROM pg_tables WHERE schemaname = 'public'"
    if dialect == "mysql":
        return "SHOW TABLES"
    return "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"


async def existing_tables(engine) -> list[str]:
    from sqlalchemy import text
    async with engine.connect() as conn:
        result = await conn.execute(text(_list_tables_sql(engine.dialect.name)))
        return [row[0] for row in result.fetchall()]


async def seed_templates(engine, templates: dict[str, str]) -> int:
    from database.session import create_session_factory
    from database.store import SqlTemplateStore

    store = SqlTemplateStore(create_session_factory(engine))
    for key, content in templates.items():
        await store.upsert_template(key, content)
    return len(templates)


async def run_migration(check_only: bool = False, seed_path: str = "", engine=None):
    from database.models import Base

    if engine is None:
        from config.settings import load_settings
        from database.session import create_engine_for_url
        settings = load_settings()
        engine = create_engine_for_url(settings.database.url)

    try:
        if check_only:
            url = str(engine.url)
            print(f"Database: {engine.dialect.name}")
            print(f"URL: {url.split('@')[-1] if '@' in url else url}")
            print(f"Tables defined: {', '.join(Base.metadata.tables.keys())}")

            existing = await existing_tables(engine)
            print(f"Tables existing: {', '.join(existing) or '(none)'}")

            missing = set(Base.metadata.tables.keys()) - set(existing)
            if missing:
                print(f"Tables MISSING: {', '.join(sorted(missing))}")
                print("Run without --check to create them.")
            else:
                print("All tables exist. ✓")
            return sorted(missing)

        print("Running database migration...")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        tables = await existing_tables(engine)
        print(f"Tables created/verified: {', '.join(tables)}")

        if seed_path:
            count = await seed_templates(engine, load_seed_templates(seed_path))
            print(f"Templates seeded: {count}")

        print("Migration complete. ✓")
        return []
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Database migration")
    parser.add_argument("--check", action="store_true", help="Check status only")
    parser.add_argument("--seed", default="", help="YAML file of template key → content to upsert")
    args = parser.parse_args()

    asyncio.run(run_migration(check_only=args.check, seed_path=args.seed))


if __name__ == "__main__":
    main()
