"""
Database utilities and connection management.

WHAT: SQLite database setup with WAL mode for the deal store
WHY: Deals, listings and chat threads are the authoritative shared records
HOW: SQLAlchemy sync engine v2 with WAL mode, session management
"""

from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, text, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from .config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Base for models
Base = declarative_base()


def create_db_engine(database_url: str) -> Engine:
    """
    Create an engine with the SQLite pragmas the store relies on.

    In-memory URLs get a StaticPool so every session sees the same database.
    """
    kwargs = {"echo": settings.DEBUG, "future": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        else:
            data_dir = Path(database_url.replace("sqlite:///", "")).parent
            data_dir.mkdir(parents=True, exist_ok=True)

    db_engine = create_engine(database_url, **kwargs)

    if database_url.startswith("sqlite"):
        @event.listens_for(db_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable WAL mode for concurrent readers and FK enforcement."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return db_engine


def create_session_factory(db_engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=db_engine,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False
    )


engine = create_db_engine(settings.DATABASE_URL)
SessionLocal = create_session_factory(engine)


@contextmanager
def get_db(session_factory: sessionmaker = None):
    """
    Context manager for database session.

    Usage:
        with get_db() as db:
            # use db session
            pass

    Args:
        session_factory: Optional factory (tests pass one bound to their own engine)

    Yields:
        Session: SQLAlchemy session
    """
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping_database(db_engine: Engine = None) -> dict:
    """
    Check database connectivity.

    Returns:
        Dict with status and info
    """
    db_engine = db_engine or engine
    try:
        with db_engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"available": True, "url": str(db_engine.url), "error": None}
    except Exception as e:
        logger.error(f"Database ping failed: {e}")
        return {"available": False, "url": str(db_engine.url), "error": str(e)}


def init_db(db_engine: Engine = None):
    """Create all tables (idempotent)."""
    # Import models so they register on Base.metadata
    from . import models  # noqa: F401

    db_engine = db_engine or engine
    Base.metadata.create_all(bind=db_engine)
    logger.info(f"Database initialized ({db_engine.url})")


def close_db(db_engine: Engine = None):
    """Close database connections."""
    (db_engine or engine).dispose()
    logger.info("Database connections closed")
