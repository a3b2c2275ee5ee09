"""Thread-safe in-memory cache of recent conversation turns per chat session.

Design decisions
────────────────
• **Cache-aside**: the database is the source of truth.  Readers call
  :meth:`ConversationCache.get`, fall back to a DB read on ``None`` and
  :meth:`put` the result.  Writers persist first, then :meth:`append`.
• **OrderedDict** keyed by session ID for O(1) LRU eviction and promotion.
• **Two bounds**: a per-session turn window (only the most recent
  ``max_turns`` are kept) and a global byte ceiling estimated via
  ``json.dumps`` length.
• **threading.Lock** because the AI service runs the agent in a worker
  thread per request.
• Purely ephemeral and per-process: a restart (or another replica) simply
  starts cold and re-reads from the database.

Usage
─────
>>> cache = ConversationCache(max_turns=20)
>>> cache.put("0b6c…", [{"role": "user", "content": "hi"}])
>>> cache.append("0b6c…", {"role": "assistant", "content": "Hello!"})
>>> cache.get("0b6c…")
[{'role': 'user', 'content': 'hi'}, {'role': 'assistant', 'content': 'Hello!'}]
"""

from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from typing import Any

logger = logging.getLogger(__name__)

Turn = dict[str, Any]

# Default ceiling: 20 MB
DEFAULT_MAX_BYTES = 20 * 1024 * 1024
DEFAULT_MAX_TURNS = 20


class ConversationCache:
    """Per-session turn window, LRU-evicted under a total byte ceiling."""

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        max_turns: int = DEFAULT_MAX_TURNS,
    ) -> None:
        self._max_bytes = max_bytes
        self._max_turns = max_turns
        self._current_bytes = 0
        # session_id → (turns, estimated_size_bytes)
        self._store: OrderedDict[str, tuple[list[Turn], int]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    # ── Size estimation ──────────────────────────────────────────────

    @staticmethod
    def _estimate_bytes(turns: list[Turn]) -> int:
        try:
            return len(json.dumps(turns, default=str).encode("utf-8"))
        except (TypeError, ValueError, OverflowError):
            return len(str(turns).encode("utf-8"))

    # ── Core operations ──────────────────────────────────────────────

    def get(self, session_id: str) -> list[Turn] | None:
        """Return a copy of the cached turns (promoting to MRU) or ``None``."""
        with self._lock:
            entry = self._store.get(session_id)
            if entry is None:
                self.misses += 1
                return None
            self._store.move_to_end(session_id)
            self.hits += 1
            return list(entry[0])

    def put(self, session_id: str, turns: list[Turn]) -> None:
        """Replace the cached window for *session_id* (trimmed to ``max_turns``)."""
        with self._lock:
            self._store_locked(session_id, list(turns)[-self._max_turns:])

    def append(self, session_id: str, *turns: Turn) -> bool:
        """Append *turns* to an already-cached session.

        A session that is not cached is left alone: the next reader will
        load the full window from the database anyway.  Returns ``True`` if
        the entry was updated.
        """
        with self._lock:
            entry = self._store.get(session_id)
            if entry is None:
                return False
            merged = (entry[0] + list(turns))[-self._max_turns:]
            self._store_locked(session_id, merged)
            return True

    def invalidate(self, session_id: str) -> bool:
        """Drop one session.  Returns ``True`` if it was cached."""
        with self._lock:
            entry = self._store.pop(session_id, None)
            if entry is None:
                return False
            self._current_bytes -= entry[1]
            return True

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._current_bytes = 0

    # ── Internal ─────────────────────────────────────────────────────

    def _store_locked(self, session_id: str, turns: list[Turn]) -> None:
        size = self._estimate_bytes(turns)

        old = self._store.pop(session_id, None)
        if old is not None:
            self._current_bytes -= old[1]

        if size > self._max_bytes:
            logger.debug(
                "Cache: not caching session %s (size %d > max %d)",
                session_id, size, self._max_bytes,
            )
            return

        while self._current_bytes + size > self._max_bytes and self._store:
            evicted_id, (_, evicted_size) = self._store.popitem(last=False)
            self._current_bytes -= evicted_size
            logger.debug("Cache: evicted session %s (%d bytes)", evicted_id, evicted_size)

        self._store[session_id] = (turns, size)
        self._current_bytes += size

    # ── Introspection ────────────────────────────────────────────────

    @property
    def current_bytes(self) -> int:
        return self._current_bytes

    @property
    def entry_count(self) -> int:
        return len(self._store)

    @property
    def max_turns(self) -> int:
        return self._max_turns

    def has(self, session_id: str) -> bool:
        """Check presence *without* promoting or counting a hit."""
        return session_id in self._store
