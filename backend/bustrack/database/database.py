"""
Database Configuration and Session Management

This module provides the SQLAlchemy engine, session factory, database
initialization utilities and the transaction runner used by the tracking
service for its atomic units of work.
"""

import os
import logging
from pathlib import Path
from typing import Callable, Optional, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from bustrack.exceptions import TrackingError, TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNIQUE_VIOLATION_SQLSTATE = "23505"

# Ensure data directory exists
DATA_DIR = Path(__file__).parent.parent.parent / "data"
DATA_DIR.mkdir(exist_ok=True)

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite:///{DATA_DIR}/bus_tracking.db"
)

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
    echo=False
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()


def init_db(bind=None):
    """
    Initialize database - create all tables

    Called on application startup to ensure all tables exist.
    """
    from bustrack.database import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info(f"[DB] Database initialized at: {DATABASE_URL if bind is None else bind.url}")


def reset_db(bind=None):
    """
    Reset database - drop and recreate all tables

    WARNING: This will delete all data!
    """
    from bustrack.database import models  # noqa: F401

    Base.metadata.drop_all(bind=bind or engine)
    Base.metadata.create_all(bind=bind or engine)
    logger.warning("[DB] Database reset complete - all data deleted")


def is_unique_violation(error: IntegrityError) -> bool:
    """True when the DBAPI error is a unique or primary-key conflict (SQLSTATE 23505)"""
    orig = error.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code is not None:
        return code == UNIQUE_VIOLATION_SQLSTATE
    message = str(orig).lower()
    return "unique" in message or "duplicate" in message


def run_in_transaction(
    work: Callable[[Session], T],
    session_factory: Optional[sessionmaker] = None,
    retries: int = 1
) -> T:
    """
    Run ``work`` in one transaction and commit, or roll back everything

    Write conflicts (optimistic-lock ``StaleDataError`` or a unique-constraint
    ``IntegrityError``) are retried ``retries`` times with a fresh session
    before surfacing as ``TransientStorageError``. Other integrity violations
    (NOT NULL, foreign key, check) are deterministic and propagate unchanged
    without a retry. Any other storage error becomes ``TransientStorageError``
    immediately. Domain errors propagate unchanged after rollback.

    ``work`` must return plain values; ORM instances are expired on commit.
    """
    factory = session_factory or SessionLocal
    attempt = 0

    while True:
        db = factory()
        try:
            result = work(db)
            db.commit()
            return result
        except (StaleDataError, IntegrityError) as e:
            db.rollback()
            if isinstance(e, IntegrityError) and not is_unique_violation(e):
                logger.error(f"[DB] Integrity violation, transaction rolled back: {e.orig}")
                raise
            if attempt < retries:
                attempt += 1
                logger.warning(f"[DB] Write conflict, retrying ({attempt}/{retries}): {e.__class__.__name__}")
                continue
            logger.error(f"[DB] Write conflict persisted after {retries} retries: {e}")
            raise TransientStorageError() from e
        except TrackingError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[DB] Storage failure, transaction rolled back: {e}")
            raise TransientStorageError() from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
