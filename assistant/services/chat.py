"""Chat sessions and their messages."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from assistant.db.models import ChatMessage, ChatSession, MessageRole, SessionStatus, User, utcnow
from assistant.db.session import get_session_factory, session_scope
from assistant.errors import ConflictError, NotFoundError
from assistant.services.users import as_uuid

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 60


def _title_from(text: str) -> str:
    text = " ".join(text.split())
    if len(text) <= TITLE_MAX_CHARS:
        return text
    return text[: TITLE_MAX_CHARS - 1].rstrip() + "…"


def to_turn(message: ChatMessage) -> dict[str, Any]:
    """The plain dict shape kept in the conversation cache."""
    return {"role": message.role, "content": message.content}


class ChatService:
    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    # ── Sessions ─────────────────────────────────────────────────────

    def create_session(
        self,
        user_id: uuid.UUID | str,
        *,
        title: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> ChatSession:
        user_uuid = as_uuid(user_id, "user")
        chat = ChatSession(user_id=user_uuid, title=title, meta=meta or {})
        with session_scope(self._session_factory) as session:
            if session.get(User, user_uuid) is None:
                raise NotFoundError(f"Unknown user: {user_id}")
            session.add(chat)
            session.flush()
        logger.info("Created chat session %s for user %s", chat.id, user_uuid)
        return chat

    def list_sessions(self, user_id: uuid.UUID | str, *, status: str | None = None) -> list[ChatSession]:
        stmt = select(ChatSession).where(ChatSession.user_id == as_uuid(user_id, "user"))
        if status:
            stmt = stmt.where(ChatSession.status == status)
        stmt = stmt.order_by(ChatSession.updated_at.desc())
        with session_scope(self._session_factory) as session:
            return list(session.scalars(stmt))

    def get_session(self, user_id: uuid.UUID | str, session_id: uuid.UUID | str) -> ChatSession:
        with session_scope(self._session_factory) as session:
            chat = session.get(ChatSession, as_uuid(session_id, "chat session"))
            if chat is None or chat.user_id != as_uuid(user_id, "user"):
                raise NotFoundError(f"Chat session {session_id} was not found.")
            return chat

    def require_active(self, user_id: uuid.UUID | str, session_id: uuid.UUID | str) -> ChatSession:
        chat = self.get_session(user_id, session_id)
        if chat.status != SessionStatus.active.value:
            raise ConflictError(f"Chat session {session_id} is closed.")
        return chat

    def close_session(self, user_id: uuid.UUID | str, session_id: uuid.UUID | str) -> ChatSession:
        with session_scope(self._session_factory) as session:
            chat = session.get(ChatSession, as_uuid(session_id, "chat session"))
            if chat is None or chat.user_id != as_uuid(user_id, "user"):
                raise NotFoundError(f"Chat session {session_id} was not found.")
            chat.status = SessionStatus.closed.value
        return chat

    def delete_session(self, user_id: uuid.UUID | str, session_id: uuid.UUID | str) -> None:
        with session_scope(self._session_factory) as session:
            chat = session.get(ChatSession, as_uuid(session_id, "chat session"))
            if chat is None or chat.user_id != as_uuid(user_id, "user"):
                raise NotFoundError(f"Chat session {session_id} was not found.")
            session.delete(chat)
        logger.info("Deleted chat session %s", session_id)

    # ── Messages ─────────────────────────────────────────────────────

    def add_message(
        self,
        session_id: uuid.UUID | str,
        role: MessageRole | str,
        content: str,
        *,
        meta: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> ChatMessage:
        message = ChatMessage(
            session_id=as_uuid(session_id, "chat session"),
            role=MessageRole(role).value,
            content=content,
            meta=meta or {},
            created_at=created_at or utcnow(),
        )
        with session_scope(self._session_factory) as session:
            session.add(message)
        return message

    def add_exchange(
        self,
        session_id: uuid.UUID | str,
        user_text: str,
        reply: str,
        *,
        received_at: datetime,
        reply_meta: dict[str, Any] | None = None,
    ) -> tuple[ChatMessage, ChatMessage]:
        """Persist one user turn and the assistant's reply in a single transaction.

        The first exchange of an untitled session also names it.
        """
        sid = as_uuid(session_id, "chat session")
        user_msg = ChatMessage(
            session_id=sid, role=MessageRole.user.value, content=user_text,
            meta={}, created_at=received_at,
        )
        reply_msg = ChatMessage(
            session_id=sid, role=MessageRole.assistant.value, content=reply,
            meta=reply_meta or {}, created_at=max(utcnow(), received_at),
        )
        with session_scope(self._session_factory) as session:
            chat = session.get(ChatSession, sid)
            if chat is None:
                raise NotFoundError(f"Chat session {session_id} was not found.")
            if not chat.title:
                chat.title = _title_from(user_text)
            chat.updated_at = utcnow()
            session.add_all([user_msg, reply_msg])
        return user_msg, reply_msg

    def list_messages(
        self,
        user_id: uuid.UUID | str,
        session_id: uuid.UUID | str,
        *,
        limit: int | None = None,
    ) -> list[ChatMessage]:
        self.get_session(user_id, session_id)
        return self._latest(as_uuid(session_id, "chat session"), limit)

    def recent_history(self, session_id: uuid.UUID | str, limit: int) -> list[dict[str, Any]]:
        """The last *limit* turns, oldest first, as cache-shaped dicts."""
        return [to_turn(m) for m in self._latest(as_uuid(session_id, "chat session"), limit)]

    def _latest(self, session_id: uuid.UUID, limit: int | None) -> list[ChatMessage]:
        stmt = select(ChatMessage).where(ChatMessage.session_id == session_id)
        if limit is None:
            stmt = stmt.order_by(ChatMessage.created_at, ChatMessage.role.desc())
            with session_scope(self._session_factory) as session:
                return list(session.scalars(stmt))
        stmt = stmt.order_by(ChatMessage.created_at.desc(), ChatMessage.role).limit(limit)
        with session_scope(self._session_factory) as session:
            return list(reversed(list(session.scalars(stmt))))
