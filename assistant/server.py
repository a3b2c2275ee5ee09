"""FastAPI app for the AI service (the tool-calling booking agent).

Run with:
    uv run uvicorn assistant.server:app --host 0.0.0.0 --port 8001
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from assistant.agent import create_booking_agent
from assistant.api.handlers import install_error_handling
from assistant.api.routes import router
from assistant.config import (
    AI_SERVICE_PORT,
    CONVERSATION_CACHE_MAX_BYTES,
    HISTORY_MAX_MESSAGES,
    SERVER_HOST,
)
from assistant.db.session import init_db
from assistant.services.cache import ConversationCache
from assistant.services.conversation import ConversationService

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: ensure tables exist, compile the agent once, build the
    conversation service (and its in-process history cache) in app state.
    """
    init_db()
    logger.info("Compiling booking agent…")
    application.state.conversation = ConversationService(
        create_booking_agent(),
        cache=ConversationCache(
            max_bytes=CONVERSATION_CACHE_MAX_BYTES,
            max_turns=HISTORY_MAX_MESSAGES,
        ),
    )
    logger.info("Agent ready.")
    yield
    application.state.conversation = None


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Appointment Assistant AI Service",
    description="Tool-calling conversational agent that books, lists, cancels and reschedules appointments.",
    version="1.0.0",
    lifespan=lifespan,
)

install_error_handling(app)
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Appointment Assistant AI Service",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting AI service on %s:%d", SERVER_HOST, AI_SERVICE_PORT)
    uvicorn.run("assistant.server:app", host=SERVER_HOST, port=AI_SERVICE_PORT)
