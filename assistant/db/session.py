"""SQLAlchemy engine and session management.

One engine per process, created lazily from ``DATABASE_URL``.  Tests (and the
CLI) can swap it for another URL with :func:`init_engine` before any service
is built.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from assistant.config import DATABASE_ECHO, DATABASE_URL
from assistant.db.models import Base

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_session_factory: sessionmaker | None = None
_lock = threading.Lock()


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # In-memory SQLite must share a single connection across threads
        return create_engine(
            url,
            echo=DATABASE_ECHO,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=DATABASE_ECHO, pool_pre_ping=True)


def init_engine(url: str | None = None) -> Engine:
    """(Re)create the process-wide engine and session factory."""
    global _engine, _session_factory
    with _lock:
        if _engine is not None:
            _engine.dispose()
        _engine = _build_engine(url or DATABASE_URL)
        _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
        logger.info("Database engine initialised (%s)", _engine.url.render_as_string(hide_password=True))
        return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    """Return the process-wide ``sessionmaker``, creating the engine on first use."""
    if _session_factory is None:
        init_engine()
    return _session_factory


def init_db(engine: Engine | None = None) -> None:
    """Create all tables (idempotent)."""
    Base.metadata.create_all(engine or get_engine())


@contextmanager
def session_scope(factory: sessionmaker | None = None) -> Iterator[Session]:
    """Transactional scope: commit on success, roll back on any exception."""
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
