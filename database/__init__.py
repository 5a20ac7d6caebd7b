"""
Database layer — Multi-backend persistence for notification jobs and templates.

Backends:
  - SQL (PostgreSQL / MySQL / SQLite via SQLAlchemy async)
  - In-memory (dict-based, for development/testing)

Quick start:
  from database import create_store, get_store
  store = create_store({"store_backend": "memory"})
  job = await store.get_job("a1b2c3")
"""
from database.models import Base, NotificationJobRow, TemplateRow
from database.session import create_engine_for_url, create_session_factory, get_engine, init_db
from database.store_base import BaseJobStore, BaseTemplateStore
from database.store import SqlJobStore, SqlTemplateStore
from database.store_memory import InMemoryJobStore, InMemoryTemplateStore
from database.store_factory import create_store, create_template_store, get_store, reset_store

__all__ = [
    # ORM models
    "Base", "NotificationJobRow", "TemplateRow",
    # Session management
    "create_engine_for_url", "create_session_factory", "get_engine", "init_db",
    # Store interfaces
    "BaseJobStore", "BaseTemplateStore",
    # Store backends
    "SqlJobStore", "SqlTemplateStore",
    "InMemoryJobStore", "InMemoryTemplateStore",
    # Factory
    "create_store", "create_template_store", "get_store", "reset_store",
]
