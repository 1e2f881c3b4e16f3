import logging
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from keyledger.models.orm.base import Base

# Register every mapped table on Base.metadata
from keyledger.models.orm import assignment, key, user  # noqa: F401

logger = logging.getLogger(__name__)


def build_engine(database_url: str, timeout: float = 30.0) -> Engine:
    """
    Create the SQLAlchemy engine for the ledger store.

    SQLite connections wait up to ``timeout`` seconds for a competing writer
    instead of failing immediately, and enforce foreign keys.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )

        @event.listens_for(engine, "connect")
        def enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    else:
        engine = create_engine(
            database_url,
            pool_size=5,
            max_overflow=10,
            pool_timeout=timeout,
            pool_pre_ping=True,
        )
    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    # One session per request; each is its own unit of work.
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create any missing tables and indexes."""
    Base.metadata.create_all(bind=engine)
    logger.info("Schema ready on %s", engine.url.render_as_string(hide_password=True))


def get_db(request: Request) -> Iterator[Session]:
    """
    Dependency that yields a database session for a single request,
    and ensures the session is closed afterward.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
