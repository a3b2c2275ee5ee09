"""Rate-limiting middleware for the gateway.

Clients are keyed by address.  Auth endpoints share a stricter bucket so
credential stuffing is throttled without starving normal traffic.
``X-Forwarded-For`` is only honoured when the direct peer is one of the
configured ``TRUSTED_PROXIES``.
"""

from __future__ import annotations

import math

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from assistant.config import TRUSTED_PROXIES

EXEMPT_PATHS = frozenset({"/", "/api/health", "/docs", "/openapi.json"})
AUTH_PREFIX = "/api/auth/"


def _client_key(request: Request, trusted: frozenset[str]) -> str:
    peer = request.client.host if request.client else "unknown"
    if peer not in trusted:
        return peer
    forwarded = request.headers.get("X-Forwarded-For")
    if not forwarded:
        return peer
    # Proxies append, so the rightmost untrusted hop is the real client
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return peer


async def enforce_rate_limit(request: Request, call_next) -> Response:
    path = request.url.path
    if path in EXEMPT_PATHS:
        return await call_next(request)

    client = _client_key(request, TRUSTED_PROXIES)
    if path.startswith(AUTH_PREFIX):
        limiter = getattr(request.app.state, "auth_rate_limiter", None)
        key = f"auth:{client}"
    else:
        limiter = getattr(request.app.state, "rate_limiter", None)
        key = f"api:{client}"
    if limiter is None:
        return await call_next(request)

    decision = limiter.check(key)
    if not decision.allowed:
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests. Please slow down."},
            headers={"Retry-After": str(max(1, math.ceil(decision.retry_after)))},
        )
    response = await call_next(request)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    return response
