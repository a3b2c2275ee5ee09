"""Append-only interaction log (chat turns, bookings, failures)."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from assistant.db.models import InteractionLog
from assistant.db.session import get_session_factory, session_scope

logger = logging.getLogger(__name__)


def add_interaction(
    session: Session,
    event_type: str,
    *,
    user_id: uuid.UUID | None = None,
    session_id: uuid.UUID | None = None,
    latency_ms: float | None = None,
    **meta: Any,
) -> InteractionLog:
    """Stage a log row on an open session so it commits with the caller's work."""
    entry = InteractionLog(
        event_type=event_type,
        user_id=user_id,
        session_id=session_id,
        latency_ms=latency_ms,
        meta=meta,
    )
    session.add(entry)
    return entry


class InteractionLogService:
    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    def record(
        self,
        event_type: str,
        *,
        user_id: uuid.UUID | None = None,
        session_id: uuid.UUID | None = None,
        latency_ms: float | None = None,
        **meta: Any,
    ) -> None:
        """Write one entry in its own transaction.  Failures are logged, not raised."""
        try:
            with session_scope(self._session_factory) as session:
                add_interaction(
                    session, event_type,
                    user_id=user_id, session_id=session_id, latency_ms=latency_ms, **meta,
                )
        except Exception:
            logger.exception("Failed to record interaction %s", event_type)

    def list_for_user(
        self,
        user_id: uuid.UUID,
        *,
        event_type: str | None = None,
        limit: int = 100,
    ) -> list[InteractionLog]:
        stmt = select(InteractionLog).where(InteractionLog.user_id == user_id)
        if event_type:
            stmt = stmt.where(InteractionLog.event_type == event_type)
        stmt = stmt.order_by(InteractionLog.created_at.desc()).limit(limit)
        with session_scope(self._session_factory) as session:
            return list(session.scalars(stmt))
