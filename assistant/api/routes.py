"""FastAPI route definitions for the AI service.

Only the gateway talks to these endpoints; chat processing requires the
shared ``X-Internal-Key`` header.
"""

from __future__ import annotations

import asyncio
import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from assistant.api.schemas import ChatProcessRequest, ChatResponse, HealthResponse
from assistant.config import INTERNAL_API_KEY
from assistant.errors import AssistantError

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_conversation(request: Request):
    """Retrieve the conversation service built during the lifespan (see ``server.py``)."""
    conversation = getattr(request.app.state, "conversation", None)
    if conversation is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return conversation


def require_internal_key(x_internal_key: str | None = Header(default=None)) -> None:
    if not x_internal_key or not hmac.compare_digest(x_internal_key, INTERNAL_API_KEY):
        raise HTTPException(status_code=401, detail="Invalid internal API key.")


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post(
    "/chat/process",
    response_model=ChatResponse,
    dependencies=[Depends(require_internal_key)],
)
async def process_chat(request: ChatProcessRequest, http_request: Request):
    """Run one conversational turn for a chat session.

    ``ConversationService.process`` blocks on the LLM provider and the
    database, so it is offloaded to the default thread-pool to keep the
    event loop responsive for other sessions and health checks.
    """
    conversation = _get_conversation(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        result = await asyncio.to_thread(
            conversation.process,
            request.session_id,
            request.user_id,
            request.message,
        )
    except (AssistantError, HTTPException):
        raise
    except Exception as e:
        # Log the traceback server-side; never leak provider errors to clients
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    return ChatResponse(
        session_id=result.session_id,
        reply=result.reply,
        tools_used=result.tools_used,
    )
