"""FastAPI dependencies shared by the gateway routers."""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from assistant.db.models import User
from assistant.errors import AssistantError
from assistant.services.security import decode_access_token

_bearer = HTTPBearer(auto_error=False)


def _state(request: Request, name: str):
    """Fetch a service from app state, or 503 if the lifespan has not run."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=503,
            detail="The service is still starting up. Please try again in a moment.",
        )
    return service


def get_users(request: Request):
    return _state(request, "users")


def get_appointments(request: Request):
    return _state(request, "appointments")


def get_chat(request: Request):
    return _state(request, "chat")


def get_ai_client(request: Request):
    return _state(request, "ai_client")


def get_token_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> dict[str, Any]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail="Not authenticated.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_access_token(credentials.credentials)
    except AssistantError as e:
        raise HTTPException(
            status_code=401, detail=e.message, headers={"WWW-Authenticate": "Bearer"},
        ) from None


def get_current_user(
    claims: dict[str, Any] = Depends(get_token_claims),
    users=Depends(get_users),
) -> User:
    try:
        user = users.get(claims["sub"])
    except AssistantError:
        user = None
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=401,
            detail="Account not found or disabled.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
