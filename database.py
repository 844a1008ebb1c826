"""
Database engine and session handling for SmartPillBox

Request handlers receive a session through get_db(); the sweep loop and
scripts open their own with get_db_context().
"""

import logging
from sqlalchemy import create_engine, event, func, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
from typing import Dict, Generator

from config import settings


logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # Suppression rows and sensor events rely on ON DELETE actions
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """
    Build an engine for the given URL.

    SQLite gets a single shared connection so the API threads and the sweep
    task see the same data (including ":memory:" databases); other backends
    get a pre-pinged connection pool.
    """
    if url.startswith("sqlite"):
        db_engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo
        )
        event.listen(db_engine, "connect", _enable_sqlite_foreign_keys)
        return db_engine

    return create_engine(
        url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True
    )


engine = create_db_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

# Base class for ORM models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Session scope for work outside a request (sweep ticks, seeding).

    Commits on a clean exit and rolls back if the block raises.

    Usage:
        with get_db_context() as db:
            store.mark_overdue_missed(db, cutoff)
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """Create any missing tables"""
    # Register the models with Base before create_all
    import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info(f"Database initialized at: {settings.DATABASE_URL}")


def reset_db() -> None:
    """
    Drop and recreate every table.
    WARNING: This will delete all data!
    """
    import models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    logger.warning("All database tables dropped")
    init_db()


class DatabaseHealthCheck:
    """Database health check utilities"""

    @staticmethod
    def is_connected() -> bool:
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.exception("Database health check failed")
            return False

    @staticmethod
    def get_intake_counts(db: Session) -> Dict[str, int]:
        """Intake records per status, for the health endpoint"""
        from models import IntakeRecord, IntakeStatus

        rows = db.query(IntakeRecord.status, func.count(IntakeRecord.id)).group_by(IntakeRecord.status).all()
        counts = {status.value: 0 for status in IntakeStatus}
        for status, count in rows:
            counts[status.value] = count
        return counts


__all__ = [
    "engine",
    "SessionLocal",
    "Base",
    "create_db_engine",
    "get_db",
    "get_db_context",
    "init_db",
    "reset_db",
    "DatabaseHealthCheck"
]
