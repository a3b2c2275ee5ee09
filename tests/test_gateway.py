"""Tests for the API gateway endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from assistant.api import rate_limit as rate_limit_middleware
from assistant.gateway import app
from assistant.services.ai_client import AIServiceError
from assistant.services.rate_limit import SlidingWindowRateLimiter


@pytest.fixture
def ai_client():
    client = MagicMock()
    client.health.return_value = True
    client.process_chat.side_effect = lambda session_id, user_id, message, request_id=None: {
        "session_id": session_id,
        "reply": "Sure, which day suits you?",
        "tools_used": [],
    }
    return client


@pytest.fixture
def client(users, appointments, chat, ai_client):
    """Gateway test client with services wired into app state (mirrors the lifespan)."""
    app.state.users = users
    app.state.appointments = appointments
    app.state.chat = chat
    app.state.ai_client = ai_client
    app.state.rate_limiter = SlidingWindowRateLimiter(1000, 60)
    app.state.auth_rate_limiter = SlidingWindowRateLimiter(1000, 60)
    yield TestClient(app)
    for name in ("users", "appointments", "chat", "ai_client", "rate_limiter", "auth_rate_limiter"):
        setattr(app.state, name, None)


def _register(client, email="alice@example.com", password="correct-horse-battery", name="Alice Example"):
    response = client.post(
        "/api/auth/register",
        json={"email": email, "full_name": name, "password": password},
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def auth(client) -> dict:
    token = _register(client)["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth(client) -> dict:
    token = _register(client, email="bob@example.com", name="Bob Example")["access_token"]
    return {"Authorization": f"Bearer {token}"}


# ── Health / root ────────────────────────────────────────────────────


class TestHealthEndpoint:
    def test_health_reports_ai_service(self, client, ai_client):
        data = client.get("/api/health").json()
        assert data == {"status": "ok", "service": "appointment-gateway", "ai_service": "ok"}

        ai_client.health.return_value = False
        assert client.get("/api/health").json()["ai_service"] == "unavailable"

    def test_root(self, client):
        assert client.get("/").json()["service"] == "Appointment Assistant API Gateway"


# ── Auth ─────────────────────────────────────────────────────────────


class TestAuth:
    def test_register_returns_token_and_user(self, client):
        data = _register(client, email="  Carol@Example.com ")
        assert data["token_type"] == "bearer"
        assert data["expires_in"] > 0
        assert data["user"]["email"] == "carol@example.com"

    def test_register_duplicate(self, client):
        _register(client)
        response = client.post(
            "/api/auth/register",
            json={"email": "alice@example.com", "full_name": "A", "password": "long-enough-pw"},
        )
        assert response.status_code == 409

    def test_register_validates_email_and_password(self, client):
        bad_email = {"email": "nope", "full_name": "A", "password": "long-enough-pw"}
        short_pw = {"email": "a@example.com", "full_name": "A", "password": "short"}
        assert client.post("/api/auth/register", json=bad_email).status_code == 422
        assert client.post("/api/auth/register", json=short_pw).status_code == 422

    def test_login(self, client):
        _register(client)
        response = client.post(
            "/api/auth/login",
            json={"email": "alice@example.com", "password": "correct-horse-battery"},
        )
        assert response.status_code == 200
        assert response.json()["access_token"]

    def test_login_wrong_password(self, client):
        _register(client)
        response = client.post(
            "/api/auth/login",
            json={"email": "alice@example.com", "password": "wrong-password"},
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password."

    def test_me(self, client, auth):
        response = client.get("/api/auth/me", headers=auth)
        assert response.status_code == 200
        assert response.json()["full_name"] == "Alice Example"

    def test_me_requires_token(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_garbage_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401

    def test_logout_revokes_token(self, client, auth):
        assert client.post("/api/auth/logout", headers=auth).status_code == 204
        response = client.get("/api/auth/me", headers=auth)
        assert response.status_code == 401
        assert "revoked" in response.json()["detail"]


# ── Appointments ─────────────────────────────────────────────────────


class TestAppointments:
    def _book(self, client, auth, start, provider="Dr. Alice Smith", **extra):
        return client.post(
            "/api/appointments",
            json={"provider": provider, "start_time": start.isoformat(), **extra},
            headers=auth,
        )

    def test_requires_auth(self, client):
        assert client.get("/api/appointments").status_code == 401

    def test_providers(self, client, auth):
        response = client.get("/api/appointments/providers", headers=auth)
        assert response.json() == {"providers": ["Dr. Alice Smith", "Dr. Raj Patel"]}

    def test_availability(self, client, auth, business_day):
        response = client.get(
            "/api/appointments/availability",
            params={"start_date": business_day.isoformat(), "end_date": business_day.isoformat(),
                    "provider": "Dr. Raj Patel"},
            headers=auth,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["timezone"] == "UTC"
        assert len(data["slots"]) == 16

    def test_availability_range_too_long(self, client, auth, business_day):
        response = client.get(
            "/api/appointments/availability",
            params={"start_date": business_day.isoformat(),
                    "end_date": (business_day + timedelta(days=30)).isoformat()},
            headers=auth,
        )
        assert response.status_code == 400

    def test_book_and_get(self, client, auth, make_slot):
        response = self._book(client, auth, make_slot(10), notes="Cleaning")
        assert response.status_code == 201
        appt = response.json()
        assert appt["status"] == "scheduled"
        assert appt["metadata"] == {"source": "api"}
        assert datetime.fromisoformat(appt["start_time"]) == make_slot(10)

        fetched = client.get(f"/api/appointments/{appt['id']}", headers=auth)
        assert fetched.json()["notes"] == "Cleaning"

    def test_double_booking_is_409(self, client, auth, other_auth, make_slot):
        assert self._book(client, auth, make_slot(10)).status_code == 201
        response = self._book(client, other_auth, make_slot(10))
        assert response.status_code == 409
        assert "already booked" in response.json()["detail"]

    def test_invalid_slot_is_400(self, client, auth, make_slot):
        assert self._book(client, auth, make_slot(10, 10)).status_code == 400

    def test_other_users_appointment_is_404(self, client, auth, other_auth, make_slot):
        appt_id = self._book(client, auth, make_slot(10)).json()["id"]
        assert client.get(f"/api/appointments/{appt_id}", headers=other_auth).status_code == 404
        assert client.delete(f"/api/appointments/{appt_id}", headers=other_auth).status_code == 404

    def test_list_with_status_filter(self, client, auth, make_slot):
        keep = self._book(client, auth, make_slot(9)).json()
        drop = self._book(client, auth, make_slot(10)).json()
        client.delete(f"/api/appointments/{drop['id']}", headers=auth)

        everything = client.get("/api/appointments", headers=auth).json()
        scheduled = client.get("/api/appointments", params={"status": "scheduled"}, headers=auth).json()
        assert len(everything) == 2
        assert [a["id"] for a in scheduled] == [keep["id"]]

    def test_cancel(self, client, auth, make_slot):
        appt_id = self._book(client, auth, make_slot(10)).json()["id"]
        response = client.delete(
            f"/api/appointments/{appt_id}", params={"reason": "Travelling"}, headers=auth,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["metadata"]["cancel_reason"] == "Travelling"

    def test_reschedule_via_patch(self, client, auth, make_slot):
        appt_id = self._book(client, auth, make_slot(10)).json()["id"]
        response = client.patch(
            f"/api/appointments/{appt_id}",
            json={"start_time": make_slot(14).isoformat()},
            headers=auth,
        )
        assert response.status_code == 200
        assert response.json()["id"] == appt_id
        assert datetime.fromisoformat(response.json()["start_time"]) == make_slot(14)

    def test_change_provider_only(self, client, auth, make_slot):
        appt_id = self._book(client, auth, make_slot(10)).json()["id"]
        response = client.patch(
            f"/api/appointments/{appt_id}", json={"provider": "Dr. Raj Patel"}, headers=auth,
        )
        assert response.json()["provider"] == "Dr. Raj Patel"

    def test_update_notes_only(self, client, auth, make_slot):
        appt_id = self._book(client, auth, make_slot(10), notes="old").json()["id"]
        response = client.patch(f"/api/appointments/{appt_id}", json={"notes": None}, headers=auth)
        assert response.status_code == 200
        assert response.json()["notes"] is None

    def test_reschedule_and_notes_together(self, client, auth, make_slot):
        appt_id = self._book(client, auth, make_slot(10), notes="old").json()["id"]
        response = client.patch(
            f"/api/appointments/{appt_id}",
            json={"start_time": make_slot(14).isoformat(), "notes": "new"},
            headers=auth,
        )
        assert response.status_code == 200
        assert response.json()["notes"] == "new"
        assert datetime.fromisoformat(response.json()["start_time"]) == make_slot(14)

    def test_failed_reschedule_keeps_notes(self, client, auth, other_auth, make_slot):
        self._book(client, other_auth, make_slot(14))
        appt_id = self._book(client, auth, make_slot(10), notes="old").json()["id"]
        response = client.patch(
            f"/api/appointments/{appt_id}",
            json={"start_time": make_slot(14).isoformat(), "notes": "new"},
            headers=auth,
        )
        assert response.status_code == 409
        fetched = client.get(f"/api/appointments/{appt_id}", headers=auth).json()
        assert fetched["notes"] == "old"
        assert datetime.fromisoformat(fetched["start_time"]) == make_slot(10)

    def test_malformed_id_is_422(self, client, auth):
        assert client.get("/api/appointments/not-a-uuid", headers=auth).status_code == 422


# ── Chatbot ──────────────────────────────────────────────────────────


class TestChatbotSessions:
    def test_create_list_get(self, client, auth):
        created = client.post("/api/chatbot/sessions", json={"title": "Booking"}, headers=auth)
        assert created.status_code == 201
        session_id = created.json()["id"]

        listed = client.get("/api/chatbot/sessions", headers=auth).json()
        assert [s["id"] for s in listed] == [session_id]

        detail = client.get(f"/api/chatbot/sessions/{session_id}", headers=auth).json()
        assert detail["title"] == "Booking"
        assert detail["messages"] == []

    def test_create_without_body(self, client, auth):
        response = client.post("/api/chatbot/sessions", headers=auth)
        assert response.status_code == 201
        assert response.json()["status"] == "active"

    def test_close_and_filter(self, client, auth):
        session_id = client.post("/api/chatbot/sessions", headers=auth).json()["id"]
        closed = client.post(f"/api/chatbot/sessions/{session_id}/close", headers=auth)
        assert closed.json()["status"] == "closed"
        active = client.get("/api/chatbot/sessions", params={"status": "active"}, headers=auth)
        assert active.json() == []

    def test_delete(self, client, auth):
        session_id = client.post("/api/chatbot/sessions", headers=auth).json()["id"]
        assert client.delete(f"/api/chatbot/sessions/{session_id}", headers=auth).status_code == 204
        assert client.get(f"/api/chatbot/sessions/{session_id}", headers=auth).status_code == 404

    def test_sessions_are_private(self, client, auth, other_auth):
        session_id = client.post("/api/chatbot/sessions", headers=auth).json()["id"]
        assert client.get(f"/api/chatbot/sessions/{session_id}", headers=other_auth).status_code == 404
        assert client.get("/api/chatbot/sessions", headers=other_auth).json() == []

    def test_messages_history(self, client, auth, chat):
        from assistant.db.models import utcnow

        session_id = client.post("/api/chatbot/sessions", headers=auth).json()["id"]
        chat.add_exchange(session_id, "hi", "hello", received_at=utcnow())
        response = client.get(f"/api/chatbot/sessions/{session_id}/messages", headers=auth)
        assert [(m["role"], m["content"]) for m in response.json()] == [
            ("user", "hi"),
            ("assistant", "hello"),
        ]


class TestChatbotMessages:
    def test_send_message_proxies_to_ai_service(self, client, auth, ai_client):
        session_id = client.post("/api/chatbot/sessions", headers=auth).json()["id"]
        me = client.get("/api/auth/me", headers=auth).json()

        response = client.post(
            f"/api/chatbot/sessions/{session_id}/messages",
            json={"message": "I need an appointment"},
            headers={**auth, "X-Request-ID": "trace-1"},
        )

        assert response.status_code == 200
        assert response.json()["reply"] == "Sure, which day suits you?"
        args = ai_client.process_chat.call_args
        assert args.args == (session_id, me["id"], "I need an appointment")
        assert args.kwargs["request_id"] == "trace-1"

    def test_closed_session_is_409_without_calling_ai(self, client, auth, ai_client):
        session_id = client.post("/api/chatbot/sessions", headers=auth).json()["id"]
        client.post(f"/api/chatbot/sessions/{session_id}/close", headers=auth)
        response = client.post(
            f"/api/chatbot/sessions/{session_id}/messages", json={"message": "hi"}, headers=auth,
        )
        assert response.status_code == 409
        ai_client.process_chat.assert_not_called()

    def test_unknown_session_is_404(self, client, auth):
        response = client.post(
            f"/api/chatbot/sessions/{uuid.uuid4()}/messages", json={"message": "hi"}, headers=auth,
        )
        assert response.status_code == 404

    def test_empty_message_is_422(self, client, auth):
        session_id = client.post("/api/chatbot/sessions", headers=auth).json()["id"]
        response = client.post(
            f"/api/chatbot/sessions/{session_id}/messages", json={"message": ""}, headers=auth,
        )
        assert response.status_code == 422

    def test_ai_service_outage_is_502(self, client, auth, ai_client):
        ai_client.process_chat.side_effect = AIServiceError("failed after 3 attempts")
        session_id = client.post("/api/chatbot/sessions", headers=auth).json()["id"]
        response = client.post(
            f"/api/chatbot/sessions/{session_id}/messages", json={"message": "hi"}, headers=auth,
        )
        assert response.status_code == 502
        assert "temporarily unavailable" in response.json()["detail"]

    def test_ai_service_conflict_passes_through(self, client, auth, ai_client):
        ai_client.process_chat.side_effect = AIServiceError(
            "rejected", status_code=409, detail="Chat session x is closed.",
        )
        session_id = client.post("/api/chatbot/sessions", headers=auth).json()["id"]
        response = client.post(
            f"/api/chatbot/sessions/{session_id}/messages", json={"message": "hi"}, headers=auth,
        )
        assert response.status_code == 409
        assert response.json()["detail"] == "Chat session x is closed."

    def test_ai_service_auth_failure_is_502(self, client, auth, ai_client):
        ai_client.process_chat.side_effect = AIServiceError("rejected", status_code=401, detail="bad key")
        session_id = client.post("/api/chatbot/sessions", headers=auth).json()["id"]
        response = client.post(
            f"/api/chatbot/sessions/{session_id}/messages", json={"message": "hi"}, headers=auth,
        )
        assert response.status_code == 502


# ── Middleware ───────────────────────────────────────────────────────


class TestRateLimiting:
    def test_auth_bucket_is_enforced(self, client):
        app.state.auth_rate_limiter = SlidingWindowRateLimiter(2, 60)
        body = {"email": "x@example.com", "password": "whatever-pw"}
        statuses = [client.post("/api/auth/login", json=body).status_code for _ in range(3)]
        assert statuses == [401, 401, 429]

    def test_429_has_retry_after(self, client, auth):
        app.state.rate_limiter = SlidingWindowRateLimiter(1, 60)
        first = client.get("/api/auth/me", headers=auth)
        assert first.status_code == 200
        ok = client.get("/api/appointments", headers=auth)
        assert ok.headers["X-RateLimit-Remaining"] == "0"
        blocked = client.get("/api/appointments", headers=auth)
        assert blocked.status_code == 429
        assert int(blocked.headers["Retry-After"]) >= 1
        assert "X-Request-ID" in blocked.headers

    def test_health_is_exempt(self, client):
        app.state.rate_limiter = SlidingWindowRateLimiter(1, 60)
        statuses = {client.get("/api/health").status_code for _ in range(3)}
        assert statuses == {200}

    def test_spoofed_forwarded_for_is_ignored(self, client):
        app.state.rate_limiter = SlidingWindowRateLimiter(2, 60)
        statuses = [
            client.get(
                "/api/appointments/providers", headers={"X-Forwarded-For": f"10.0.0.{i}"},
            ).status_code
            for i in range(20)
        ]
        assert statuses[:2] == [401, 401]
        assert set(statuses[2:]) == {429}
        assert len(app.state.rate_limiter) == 1

    def test_spoofed_forwarded_for_cannot_dodge_auth_bucket(self, client):
        app.state.auth_rate_limiter = SlidingWindowRateLimiter(2, 60)
        body = {"email": "x@example.com", "password": "whatever-pw"}
        statuses = [
            client.post(
                "/api/auth/login", json=body, headers={"X-Forwarded-For": f"198.51.100.{i}"},
            ).status_code
            for i in range(3)
        ]
        assert statuses == [401, 401, 429]

    def test_trusted_proxy_forwards_client_address(self, client, monkeypatch):
        # TestClient connects from the peer address "testclient"
        monkeypatch.setattr(rate_limit_middleware, "TRUSTED_PROXIES", frozenset({"testclient"}))
        app.state.rate_limiter = SlidingWindowRateLimiter(1, 60)
        a = client.get("/api/appointments", headers={"X-Forwarded-For": "10.0.0.1"})
        b = client.get("/api/appointments", headers={"X-Forwarded-For": "10.0.0.2"})
        again = client.get("/api/appointments", headers={"X-Forwarded-For": "10.0.0.1"})
        # Distinct clients both reach auth (401); the repeat is throttled
        assert (a.status_code, b.status_code, again.status_code) == (401, 401, 429)

    def test_trusted_proxy_chain_uses_rightmost_untrusted_hop(self, client, monkeypatch):
        monkeypatch.setattr(
            rate_limit_middleware, "TRUSTED_PROXIES", frozenset({"testclient", "10.1.1.1"}),
        )
        app.state.rate_limiter = SlidingWindowRateLimiter(1, 60)
        first = client.get(
            "/api/appointments", headers={"X-Forwarded-For": "1.2.3.4, 203.0.113.7, 10.1.1.1"},
        )
        # Only the spoofable leftmost entry differs, so this is the same client
        second = client.get(
            "/api/appointments", headers={"X-Forwarded-For": "5.6.7.8, 203.0.113.7, 10.1.1.1"},
        )
        assert (first.status_code, second.status_code) == (401, 429)


class TestServiceNotReady:
    def test_503_before_lifespan(self, client, auth):
        app.state.appointments = None
        response = client.get("/api/appointments", headers=auth)
        assert response.status_code == 503
