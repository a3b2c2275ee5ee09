"""Gateway routes: chatbot sessions, message history and chat turns.

Sessions and history are read straight from the database; new messages are
proxied to the AI service, which runs the agent and persists the exchange.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from assistant.api.deps import get_ai_client, get_chat, get_current_user
from assistant.api.schemas import (
    ChatMessageOut,
    ChatResponse,
    ChatSessionDetail,
    ChatSessionOut,
    MessageCreate,
    SessionCreate,
)
from assistant.db.models import SessionStatus, User
from assistant.services.ai_client import AIServiceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chatbot", tags=["chatbot"])


@router.post("/sessions", response_model=ChatSessionOut, status_code=status.HTTP_201_CREATED)
def create_session(
    body: SessionCreate | None = None,
    user: User = Depends(get_current_user),
    chat=Depends(get_chat),
):
    return chat.create_session(user.id, title=body.title if body else None)


@router.get("/sessions", response_model=list[ChatSessionOut])
def list_sessions(
    status_filter: SessionStatus | None = Query(None, alias="status"),
    user: User = Depends(get_current_user),
    chat=Depends(get_chat),
):
    return chat.list_sessions(user.id, status=status_filter.value if status_filter else None)


@router.get("/sessions/{session_id}", response_model=ChatSessionDetail)
def get_session(
    session_id: uuid.UUID,
    user: User = Depends(get_current_user),
    chat=Depends(get_chat),
):
    session = chat.get_session(user.id, session_id)
    messages = chat.list_messages(user.id, session_id)
    return ChatSessionDetail(
        **ChatSessionOut.model_validate(session).model_dump(),
        messages=[ChatMessageOut.model_validate(m) for m in messages],
    )


@router.post("/sessions/{session_id}/close", response_model=ChatSessionOut)
def close_session(
    session_id: uuid.UUID,
    user: User = Depends(get_current_user),
    chat=Depends(get_chat),
):
    return chat.close_session(user.id, session_id)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session(
    session_id: uuid.UUID,
    user: User = Depends(get_current_user),
    chat=Depends(get_chat),
):
    chat.delete_session(user.id, session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/sessions/{session_id}/messages", response_model=list[ChatMessageOut])
def list_messages(
    session_id: uuid.UUID,
    limit: int | None = Query(None, ge=1, le=500),
    user: User = Depends(get_current_user),
    chat=Depends(get_chat),
):
    return chat.list_messages(user.id, session_id, limit=limit)


@router.post("/sessions/{session_id}/messages", response_model=ChatResponse)
async def send_message(
    session_id: uuid.UUID,
    body: MessageCreate,
    http_request: Request,
    user: User = Depends(get_current_user),
    chat=Depends(get_chat),
    ai_client=Depends(get_ai_client),
):
    """Send a message to the assistant and get its reply.

    Ownership and the session's state are checked here so the AI service
    only ever sees sessions the caller owns.  The AI client is blocking
    (with retries), so it runs in a worker thread.
    """
    chat.require_active(user.id, session_id)
    request_id = getattr(http_request.state, "request_id", None)

    try:
        result = await asyncio.to_thread(
            ai_client.process_chat,
            str(session_id),
            str(user.id),
            body.message,
            request_id=request_id,
        )
    except AIServiceError as e:
        logger.error("[%s] AI service call failed: %s (%s)", request_id, e, e.detail)
        if e.status_code in (400, 404, 409, 422):
            # Pass through the AI service's verdict (unknown/closed session, validation)
            raise HTTPException(status_code=e.status_code, detail=e.detail or str(e)) from e
        raise HTTPException(
            status_code=502,
            detail="The assistant is temporarily unavailable. Please try again.",
        ) from e

    return ChatResponse(**result)
