"""
Database connection, pool and readiness management
"""
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from shared.config import (
    DATABASE_URL,
    DB_POOL_MIN,
    DB_POOL_MAX,
    DB_POOL_TIMEOUT,
    DB_CONNECTION_TIMEOUT,
    DB_STATEMENT_TIMEOUT_MS,
)

logger = logging.getLogger(__name__)


class Store:
    """Process-wide handle on the candle store

    Owns the engine (and therefore the connection pool) together with a
    readiness flag. The flag starts unset, is set by the first successful
    probe and is never cleared afterwards; request handlers only read it.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        self._ready = threading.Event()

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def probe(self) -> bool:
        """Round-trip ``SELECT 1``; marks the store ready on success"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Database probe failed: {e}")
            return False

        if not self._ready.is_set():
            self._ready.set()
            logger.info("Database connection established")
        return True

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session scope with rollback on exception and guaranteed close

        Commits are left to the caller.
        """
        session = self._session_factory()
        try:
            yield session
        except Exception:
            try:
                session.rollback()
            except Exception as e:
                logger.error(f"Error rolling back session: {e}")
            raise
        finally:
            try:
                session.close()
            except Exception as e:
                logger.error(f"Error closing session: {e}")

    def dispose(self):
        self.engine.dispose()


def create_store(database_url: Optional[str] = None) -> Store:
    """
    Build the store with a bounded pool and per-statement timeout
    """
    url = database_url or DATABASE_URL
    connect_args = {}
    if url.startswith("postgresql"):
        connect_args = {
            "connect_timeout": DB_CONNECTION_TIMEOUT,
            "options": f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}",
        }

    engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=DB_POOL_MIN,
        max_overflow=max(DB_POOL_MAX - DB_POOL_MIN, 0),
        pool_timeout=DB_POOL_TIMEOUT,
        pool_pre_ping=True,
        pool_recycle=3600,  # Recycle connections after 1 hour
        connect_args=connect_args,
        echo=False
    )
    return Store(engine)
