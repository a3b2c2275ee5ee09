"""FastAPI app for the API gateway in front of the React chat UI.

Owns authentication (JWT), rate limiting, appointment CRUD and chatbot
session management; chat turns are forwarded to the AI service.

Run with:
    uv run uvicorn assistant.gateway:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from assistant.api import appointments, auth, chatbot
from assistant.api.handlers import install_error_handling
from assistant.api.rate_limit import enforce_rate_limit
from assistant.api.schemas import GatewayHealthResponse
from assistant.config import (
    AUTH_RATE_LIMIT_REQUESTS,
    CORS_ORIGINS,
    GATEWAY_PORT,
    RATE_LIMIT_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
    SERVER_HOST,
)
from assistant.db.session import init_db
from assistant.services.ai_client import AIServiceClient
from assistant.services.appointments import get_appointment_service
from assistant.services.chat import ChatService
from assistant.services.rate_limit import SlidingWindowRateLimiter
from assistant.services.users import UserService

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(application: FastAPI):
    init_db()
    application.state.users = UserService()
    application.state.appointments = get_appointment_service()
    application.state.chat = ChatService()
    application.state.ai_client = AIServiceClient()
    application.state.rate_limiter = SlidingWindowRateLimiter(
        RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW_SECONDS,
    )
    application.state.auth_rate_limiter = SlidingWindowRateLimiter(
        AUTH_RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW_SECONDS,
    )
    logger.info("Gateway ready.")
    yield
    application.state.ai_client.close()


app = FastAPI(
    title="Appointment Assistant API Gateway",
    description="Auth, appointments and chatbot sessions for the appointment assistant UI.",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware added last runs first: CORS → request ID → rate limit
app.middleware("http")(enforce_rate_limit)
install_error_handling(app)

# ── CORS (needed for React frontend) ────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api")
app.include_router(appointments.router, prefix="/api")
app.include_router(chatbot.router, prefix="/api")


@app.get("/api/health", response_model=GatewayHealthResponse)
async def health_check(request: Request):
    """Gateway liveness plus a probe of the AI service."""
    ai_client = getattr(request.app.state, "ai_client", None)
    reachable = ai_client is not None and await asyncio.to_thread(ai_client.health)
    return GatewayHealthResponse(ai_service="ok" if reachable else "unavailable")


@app.get("/")
async def root():
    return {
        "service": "Appointment Assistant API Gateway",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    logger.info("Starting API gateway on %s:%d", SERVER_HOST, GATEWAY_PORT)
    uvicorn.run("assistant.gateway:app", host=SERVER_HOST, port=GATEWAY_PORT)
