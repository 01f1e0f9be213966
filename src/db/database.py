"""Database engine and session helpers.

The session factory is built from a URL rather than at import time so the API,
the worker and the tests can each point at their own database.
"""

import logging
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _is_in_memory(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


def create_db_engine(database_url: str) -> Engine:
    """Create an engine for ``database_url``.

    SQLite connections get ``PRAGMA foreign_keys=ON`` so that ``ON DELETE
    CASCADE`` holds; in-memory SQLite shares one connection across sessions.
    """
    kwargs = {}
    if _is_sqlite(database_url):
        kwargs["connect_args"] = {"check_same_thread": False}
        if _is_in_memory(database_url):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **kwargs)

    if _is_sqlite(database_url):

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    logger.info("Database engine created", extra={"dialect": engine.dialect.name})
    return engine


def create_session_factory(database_url: str) -> sessionmaker:
    """Build a session factory bound to a fresh engine."""
    engine = create_db_engine(database_url)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(session_factory: sessionmaker) -> None:
    """Create every table that does not exist yet."""
    # Register models on Base.metadata
    from src.db import models  # noqa: F401

    Base.metadata.create_all(bind=session_factory.kw["bind"])


def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Yield a session and always close it (FastAPI dependency style)."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
