"""The conversation loop run by the AI service for each chat turn.

    verify session → load history (cache-aside) → invoke agent
        → persist user + assistant messages → update cache → log interaction

The agent call is synchronous and blocking (it talks to the LLM provider);
the HTTP layer offloads :meth:`ConversationService.process` to a worker
thread.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from langchain_core.messages import AIMessage, AnyMessage, HumanMessage

from assistant.config import AGENT_RECURSION_LIMIT, HISTORY_MAX_MESSAGES
from assistant.db.models import MessageRole, utcnow
from assistant.errors import AssistantError
from assistant.services.cache import ConversationCache
from assistant.services.chat import ChatService
from assistant.services.interactions import InteractionLogService
from assistant.services.users import UserService, as_uuid

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I'm sorry, I wasn't able to generate a response. Please try again."


@dataclass
class ConversationResult:
    session_id: str
    reply: str
    tools_used: list[str] = field(default_factory=list)


def turns_to_messages(turns: list[dict[str, Any]]) -> list[AnyMessage]:
    messages: list[AnyMessage] = []
    for turn in turns:
        if turn["role"] == MessageRole.user.value:
            messages.append(HumanMessage(content=turn["content"]))
        else:
            messages.append(AIMessage(content=turn["content"]))
    return messages


def _message_text(message: Any) -> str:
    """Flatten an AI message's content (string or content-block list) to text."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        ]
        return "".join(parts)
    return str(content)


def _turn_messages(messages: list[AnyMessage]) -> list[AnyMessage]:
    """Messages the agent produced after the latest user prompt."""
    for index in range(len(messages) - 1, -1, -1):
        if isinstance(messages[index], HumanMessage):
            return messages[index + 1:]
    return messages


def _tools_used(new_messages: list[AnyMessage]) -> list[str]:
    names: list[str] = []
    for msg in new_messages:
        for call in getattr(msg, "tool_calls", None) or []:
            if call["name"] not in names:
                names.append(call["name"])
    return names


class ConversationService:
    def __init__(
        self,
        agent,
        *,
        chat: ChatService | None = None,
        users: UserService | None = None,
        interactions: InteractionLogService | None = None,
        cache: ConversationCache | None = None,
        history_limit: int = HISTORY_MAX_MESSAGES,
    ) -> None:
        self._agent = agent
        self._chat = chat or ChatService()
        self._users = users or UserService()
        self._interactions = interactions or InteractionLogService()
        self._cache = cache or ConversationCache(max_turns=history_limit)
        self._history_limit = history_limit

    @property
    def cache(self) -> ConversationCache:
        return self._cache

    def load_history(self, session_id: str) -> list[dict[str, Any]]:
        """Recent turns for *session_id*: cache first, database on miss."""
        turns = self._cache.get(session_id)
        if turns is not None:
            return turns
        turns = self._chat.recent_history(session_id, self._history_limit)
        self._cache.put(session_id, turns)
        logger.debug("History cache miss for %s: loaded %d turns", session_id, len(turns))
        return turns

    def process(self, session_id: str | uuid.UUID, user_id: str | uuid.UUID, message: str) -> ConversationResult:
        sid = str(as_uuid(session_id, "chat session"))
        uid = as_uuid(user_id, "user")

        try:
            self._chat.require_active(uid, sid)
        except AssistantError:
            # Deleted/closed in the gateway process; forget any stale turns
            self._cache.invalidate(sid)
            raise
        user = self._users.get(uid)

        received_at = utcnow()
        history = turns_to_messages(self.load_history(sid))
        prompt = HumanMessage(content=message)

        t0 = time.perf_counter()
        try:
            result = self._agent.invoke(
                {"messages": history + [prompt], "user_name": user.full_name},
                config={
                    "configurable": {"user_id": str(uid), "session_id": sid},
                    "recursion_limit": AGENT_RECURSION_LIMIT,
                },
            )
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            self._interactions.record(
                "chat_failed", user_id=uid, session_id=uuid.UUID(sid), latency_ms=elapsed,
                error_type=type(exc).__name__,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000

        messages = result.get("messages", [])
        new_messages = _turn_messages(messages)
        if not messages or not isinstance(messages[-1], AIMessage):
            logger.error("Agent returned no final AI message for session %s", sid)
            reply = FALLBACK_REPLY
        else:
            reply = _message_text(messages[-1]) or FALLBACK_REPLY
        tools = _tools_used(new_messages)

        user_msg, reply_msg = self._chat.add_exchange(
            sid, message, reply,
            received_at=received_at,
            reply_meta={"tools_used": tools, "latency_ms": round(elapsed, 1)},
        )
        self._cache.append(sid, {"role": user_msg.role, "content": user_msg.content},
                           {"role": reply_msg.role, "content": reply_msg.content})
        self._interactions.record(
            "chat_processed", user_id=uid, session_id=uuid.UUID(sid), latency_ms=elapsed,
            tools_used=tools, message_chars=len(message), reply_chars=len(reply),
        )
        logger.info("Session %s: replied in %.0fms (tools: %s)", sid, elapsed, tools or "none")
        return ConversationResult(session_id=sid, reply=reply, tools_used=tools)
