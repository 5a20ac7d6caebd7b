"""
Async engines and transactional sessions for the job and template stores.

URL → driver:
  postgresql:// | postgres://   → postgresql+asyncpg   (asyncpg)
  mysql:// | mysql+pymysql://   → mysql+aiomysql       (aiomysql, optional extra)
  sqlite://                     → sqlite+aiosqlite     (aiosqlite)

The runtime builds its own engine with create_engine_for_url() and hands a
session factory to the stores. Stores constructed without one fall back to
a process-wide default built from settings (get_session_factory()).

    engine = create_engine_for_url("sqlite:///./notifications.db")
    await init_db(engine)
    async with session_scope(create_session_factory(engine)) as db:
        ...
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import (
    create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker,
)

from config.settings import get_settings
from database.models import Base

logger = structlog.get_logger()

_ASYNC_DRIVERS = (
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
    ("mysql+pymysql://", "mysql+aiomysql://"),
    ("mysql://", "mysql+aiomysql://"),
    ("sqlite://", "sqlite+aiosqlite://"),
)

# PostgreSQL / MySQL pool tuning
_POOL_OPTIONS = {
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
}

_default_engine: AsyncEngine | None = None
_default_factory: async_sessionmaker[AsyncSession] | None = None


def _to_async_url(db_url: str) -> str:
    """Swap a sync URL scheme for its async driver; async URLs pass through."""
    for sync_prefix, async_prefix in _ASYNC_DRIVERS:
        if db_url.startswith(sync_prefix):
            return async_prefix + db_url[len(sync_prefix):]
    return db_url


def _engine_kwargs(async_url: str, echo: bool = False) -> dict[str, Any]:
    if async_url.startswith("sqlite"):
        # Writers are serialised by SQLite itself; concurrent claims wait on
        # the database lock (busy timeout, seconds) instead of erroring.
        return {"echo": echo, "connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"echo": echo, **_POOL_OPTIONS}


def create_engine_for_url(db_url: str, echo: bool = False) -> AsyncEngine:
    url = _to_async_url(db_url)
    engine = create_async_engine(url, **_engine_kwargs(url, echo))
    logger.debug("database_engine_created", dialect=engine.dialect.name)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Stores return detached pydantic copies, so rows must stay readable after commit.
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """One transaction: commit on clean exit, roll back on any exception."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ──────────────────────────────────────────────────────────────
#  Settings-backed default engine
# ──────────────────────────────────────────────────────────────

def get_engine() -> AsyncEngine:
    global _default_engine
    if _default_engine is None:
        db = get_settings().database
        _default_engine = create_engine_for_url(db.url, echo=db.echo)
        logger.info("default_database_engine_created", dialect=_default_engine.dialect.name)
    return _default_engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _default_factory
    if _default_factory is None:
        _default_factory = create_session_factory(get_engine())
    return _default_factory


async def init_db(engine: AsyncEngine = None) -> None:
    """Create the notification_jobs and templates tables if missing."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized", dialect=engine.dialect.name,
                tables=sorted(Base.metadata.tables))
