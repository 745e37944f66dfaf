"""
Database Package

SQLAlchemy engine/session management, ORM models and the business
settings store.

Usage:
    from bustrack.database import SessionLocal, init_db, run_in_transaction
"""

from .database import (
    Base,
    DATABASE_URL,
    SessionLocal,
    engine,
    init_db,
    reset_db,
    run_in_transaction,
)
from .settings_store import SettingsCache, SettingsStore

__all__ = [
    "Base",
    "DATABASE_URL",
    "SessionLocal",
    "engine",
    "init_db",
    "reset_db",
    "run_in_transaction",
    "SettingsCache",
    "SettingsStore",
]
