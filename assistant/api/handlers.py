"""Exception handling and middleware shared by both FastAPI apps."""

from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from assistant.errors import AssistantError

logger = logging.getLogger(__name__)


async def _assistant_error_handler(request: Request, exc: AssistantError) -> JSONResponse:
    """Map domain errors raised by the service layer onto their status codes."""
    request_id = getattr(request.state, "request_id", "?")
    logger.info("[%s] %s: %s", request_id, type(exc).__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is echoed in the ``X-Request-ID`` response header so the client
    can reference it in support tickets; a client-supplied ID is kept.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def install_error_handling(app: FastAPI) -> None:
    app.add_exception_handler(AssistantError, _assistant_error_handler)
    app.middleware("http")(add_request_id)
