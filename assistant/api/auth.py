"""Gateway routes: registration, login, logout and the current user."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Response, status

from assistant.api.deps import get_current_user, get_token_claims, get_users
from assistant.api.schemas import LoginRequest, RegisterRequest, TokenResponse, UserOut
from assistant.config import JWT_EXPIRE_MINUTES
from assistant.db.models import User
from assistant.services.security import create_access_token, revoke_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user.id),
        expires_in=JWT_EXPIRE_MINUTES * 60,
        user=UserOut.model_validate(user),
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, users=Depends(get_users)):
    user = users.register(body.email, body.full_name, body.password)
    return _token_response(user)


@router.post("/login", response_model=TokenResponse)
def login(body: LoginRequest, users=Depends(get_users)):
    user = users.authenticate(body.email, body.password)
    logger.info("User %s logged in", user.id)
    return _token_response(user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(claims: dict[str, Any] = Depends(get_token_claims)):
    revoke_access_token(claims)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user
