"""HTTP client the API gateway uses to reach the AI service.

Every request carries the shared ``X-Internal-Key``.  Failures are retried
with exponential backoff; 4xx responses are surfaced immediately with the AI
service's status code.  Chat turns run tools and persist messages, so they
are only retried when the AI service never saw them.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from assistant.config import AI_SERVICE_URL, INTERNAL_API_KEY
from assistant.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
# LLM turns with several tool hops can take a while
REQUEST_TIMEOUT_SECONDS = 90.0
HEALTH_TIMEOUT_SECONDS = 3.0

INTERNAL_KEY_HEADER = "X-Internal-Key"

# Failures where the request never reached the AI service
UNDELIVERED_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)
# Proxy/startup responses returned before a chat turn runs
NOT_PROCESSED_STATUSES = frozenset({502, 503})


class AIServiceError(Exception):
    """Raised when an AI service call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None, detail: str | None = None):
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class AIServiceClient:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        backoff_seconds: float = INITIAL_BACKOFF_SECONDS,
    ):
        self._base_url = base_url or AI_SERVICE_URL
        self._backoff = backoff_seconds
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                INTERNAL_KEY_HEADER: api_key or INTERNAL_API_KEY,
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # ── Internal helpers ─────────────────────────────────────────────

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict) and "detail" in body:
            return str(body["detail"])
        return response.text

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Execute an HTTP request with exponential-backoff retries.

        Requests are only retried when the AI service cannot have acted on
        them: the connection was never made, or a 502/503 came back before
        the turn ran.  A read or write timeout fails immediately.
        """
        operation = f"{method} {path}"
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = self._client.request(method, path, json=json_body, headers=headers)
                elapsed = (time.perf_counter() - t0) * 1000
                if response.status_code >= 500:
                    raise AIServiceError(
                        f"AI service error {response.status_code}",
                        status_code=response.status_code,
                        detail=self._detail(response),
                    )
                if response.status_code >= 400:
                    metrics.record_failure("ai_service", operation, error_type="4xx", latency_ms=elapsed)
                    raise AIServiceError(
                        f"AI service rejected request ({response.status_code})",
                        status_code=response.status_code,
                        detail=self._detail(response),
                    )
                metrics.record_success("ai_service", operation, latency_ms=elapsed)
                return response.json()

            except UNDELIVERED_ERRORS as exc:
                last_error = exc
                metrics.record_failure("ai_service", operation, error_type=type(exc).__name__)
                logger.warning(
                    "AI service attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt, MAX_RETRIES, type(exc).__name__, self._backoff * (2 ** (attempt - 1)),
                )
            except httpx.TransportError as exc:
                # Sent but unanswered; the AI service may still be running the turn
                metrics.record_failure("ai_service", operation, error_type=type(exc).__name__)
                raise AIServiceError(f"AI service request failed: {type(exc).__name__}") from exc
            except AIServiceError as exc:
                if exc.status_code and exc.status_code >= 500:
                    metrics.record_failure(
                        "ai_service", operation,
                        error_type="5xx", latency_ms=(time.perf_counter() - t0) * 1000,
                    )
                    if exc.status_code not in NOT_PROCESSED_STATUSES:
                        raise
                    last_error = exc
                    logger.warning(
                        "AI service server error on attempt %d/%d. Retrying…", attempt, MAX_RETRIES,
                    )
                else:
                    raise  # 4xx errors are not retried

            if attempt < MAX_RETRIES:
                time.sleep(self._backoff * (2 ** (attempt - 1)))

        raise AIServiceError(f"AI service request failed after {MAX_RETRIES} attempts: {last_error}")

    # ── Public API ───────────────────────────────────────────────────

    def process_chat(
        self,
        session_id: str,
        user_id: str,
        message: str,
        *,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        """Run one chat turn.  Returns ``{"session_id", "reply", "tools_used"}``."""
        headers = {"X-Request-ID": request_id} if request_id else None
        return self._request(
            "POST",
            "/api/chat/process",
            json_body={"session_id": session_id, "user_id": user_id, "message": message},
            headers=headers,
        )

    def health(self) -> bool:
        """Single, non-retried probe of the AI service health endpoint."""
        try:
            response = self._client.get("/api/health", timeout=HEALTH_TIMEOUT_SECONDS)
        except httpx.HTTPError as exc:
            logger.warning("AI service health probe failed: %s", exc)
            return False
        return response.status_code == 200
