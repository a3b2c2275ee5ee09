"""Pydantic schemas for the gateway and AI service endpoints."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from assistant.services.users import validate_email

# ── Health ──────────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "appointment-ai-service"


class GatewayHealthResponse(BaseModel):
    status: str = "ok"
    service: str = "appointment-gateway"
    ai_service: str = Field(..., description="'ok' or 'unavailable'")


# ── Auth ────────────────────────────────────────────────────────────


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=320)
    full_name: str = Field(..., min_length=1, max_length=200)
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        error = validate_email(value)
        if error:
            raise ValueError(error)
        return value.strip().lower()


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1, max_length=128)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    full_name: str
    created_at: datetime


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Token lifetime in seconds")
    user: UserOut


# ── Appointments ────────────────────────────────────────────────────


class AppointmentCreate(BaseModel):
    provider: str = Field(..., min_length=1, max_length=200)
    start_time: datetime = Field(..., description="Slot start; naive values are clinic-local")
    notes: str | None = Field(None, max_length=2000)


class AppointmentUpdate(BaseModel):
    """Partial update: a new ``start_time``/``provider`` reschedules."""

    start_time: datetime | None = None
    provider: str | None = Field(None, min_length=1, max_length=200)
    notes: str | None = Field(None, max_length=2000)


class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    provider: str
    start_time: datetime
    end_time: datetime
    status: str
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="meta")
    created_at: datetime


class SlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider: str
    start_time: datetime
    end_time: datetime


class AvailabilityResponse(BaseModel):
    start_date: date
    end_date: date
    timezone: str
    slots: list[SlotOut]


class ProvidersResponse(BaseModel):
    providers: list[str]


# ── Chatbot sessions (gateway) ──────────────────────────────────────


class SessionCreate(BaseModel):
    title: str | None = Field(None, max_length=200)


class ChatMessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    role: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="meta")
    created_at: datetime


class ChatSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str | None = None
    status: str
    created_at: datetime
    updated_at: datetime


class ChatSessionDetail(ChatSessionOut):
    messages: list[ChatMessageOut] = Field(default_factory=list)


class MessageCreate(BaseModel):
    """Incoming chat message from the frontend."""

    message: str = Field(..., min_length=1, max_length=2000, description="The user's message")


# ── Chat processing (AI service) ────────────────────────────────────


class ChatProcessRequest(BaseModel):
    session_id: uuid.UUID
    user_id: uuid.UUID
    message: str = Field(..., min_length=1, max_length=2000)


class ChatResponse(BaseModel):
    """One assistant turn."""

    session_id: uuid.UUID
    reply: str = Field(..., description="The assistant's response message")
    tools_used: list[str] = Field(default_factory=list)
