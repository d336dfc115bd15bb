# File: app/db/session.py
"""
Database session management for Receets.

The engine and session factory are owned by a ``Database`` object created in
``app.main.create_app`` and stored on ``app.state.db``; nothing here opens a
connection at import time.

Usage:
    from app.db.session import get_db

    # In FastAPI dependency
    def some_endpoint(db: Session = Depends(get_db)):
        # Use db for database operations
        ...
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from fastapi import Request
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.db.models import Base

# Configure module logger
logger = logging.getLogger(__name__)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _is_sqlite_memory(url: str) -> bool:
    return _is_sqlite(url) and (url.endswith(":memory:") or url.rstrip("/") in ("sqlite:", "sqlite:/"))


class Database:
    """
    Engine and session factory for one application instance.

    Args:
        url: SQLAlchemy database URL (defaults to settings.DATABASE_URL)
        echo: Echo SQL statements (defaults to settings.DB_ECHO)
    """

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        self.url = url or settings.DATABASE_URL
        self.engine: Engine = self._create_engine(
            self.url, settings.DB_ECHO if echo is None else echo
        )
        self.session_factory = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )

    @staticmethod
    def _create_engine(url: str, echo: bool) -> Engine:
        kwargs = {"echo": echo, "pool_pre_ping": True}
        if _is_sqlite(url):
            kwargs["connect_args"] = {"check_same_thread": False}
            if _is_sqlite_memory(url):
                # One shared connection, otherwise every session sees an empty database
                kwargs["poolclass"] = StaticPool

        logger.info(f"Creating SQLAlchemy engine for {url.split('@')[-1]}")
        engine = create_engine(url, **kwargs)

        if _is_sqlite(url):

            @event.listens_for(engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON;")
                cursor.close()

        return engine

    def create_all(self) -> None:
        """Create all tables known to the model metadata."""
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database schema created")

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def verify_connection(self) -> bool:
        """
        Verify that we can connect to the database.

        Returns:
            True if connection succeeds, False otherwise
        """
        try:
            with self.engine.connect() as connection:
                result = connection.execute(text("SELECT 1")).scalar()
                logger.info(f"Database connection verified: {result}")
                return True
        except Exception as e:
            logger.error(f"Database connection verification failed: {e}")
            return False

    def new_session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager yielding a session that is closed afterwards.

        Commits are left to the caller (services use ``BaseService.transaction``).
        """
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()


# -----------------------------------------------------------------------------
# FastAPI Dependency
# -----------------------------------------------------------------------------


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Get a database session bound to the application's Database.

    Returns:
        SQLAlchemy Session for database operations
    """
    database: Database = request.app.state.db
    db = database.new_session()
    try:
        yield db
    except Exception as e:
        db.rollback()
        logger.debug(f"Rolled back request session after error: {e}")
        raise
    finally:
        db.close()
