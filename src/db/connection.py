"""SQLAlchemy engine & session factory.

Single shared engine with connection pooling.  Metric queries run through
`readonly_connection`, which sets the transaction to READ ONLY before
executing; loads and DDL go through `write_connection`.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine (lazy-created, cached)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            # row-count and insert bookkeeping assume at least this level
            isolation_level="READ COMMITTED",
            echo=False,
        )
        logger.info("DB engine created  host=%s  db=%s", settings.postgres_host, settings.postgres_db)
    return _engine


@contextmanager
def readonly_connection(engine: Engine | None = None) -> Generator[Connection, None, None]:
    """Yield a connection set to READ ONLY transaction mode.

    The connection is returned to the pool on exit.
    """
    engine = engine or get_engine()
    conn = engine.connect()
    try:
        if engine.dialect.name == "postgresql":
            conn.execute(text("SET TRANSACTION READ ONLY"))
        yield conn
    finally:
        conn.close()


@contextmanager
def write_connection(engine: Engine | None = None) -> Generator[Connection, None, None]:
    """Yield a connection inside a transaction that commits on clean exit."""
    engine = engine or get_engine()
    with engine.begin() as conn:
        yield conn
