"""Shared test fixtures for the appointment assistant test suite."""

from __future__ import annotations

import os
from datetime import UTC, date, datetime, time, timedelta

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("JWT_SECRET", "test-jwt-secret-0123456789abcdef0123456789")
    os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key-456")
    os.environ.setdefault("OPENAI_API_KEY", "test-openai-key-123")
    os.environ.setdefault("DATABASE_URL", "sqlite://")
    os.environ.setdefault("PASSWORD_HASH_ITERATIONS", "1000")
    os.environ["CLINIC_TIMEZONE"] = "UTC"
    os.environ["PROVIDERS"] = "Dr. Alice Smith,Dr. Raj Patel"
    os.environ["BUSINESS_HOURS_START"] = "9"
    os.environ["BUSINESS_HOURS_END"] = "17"
    os.environ["BUSINESS_DAYS"] = "0,1,2,3,4"
    os.environ["SLOT_MINUTES"] = "30"
    os.environ["METRICS_ENABLED"] = "false"


def next_business_day(days_ahead: int = 2) -> date:
    """First Monday–Friday at least *days_ahead* days from today (UTC)."""
    day = datetime.now(UTC).date() + timedelta(days=days_ahead)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day


def slot_at(day: date, hour: int = 10, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=UTC)


@pytest.fixture
def session_factory():
    """A fresh in-memory SQLite database with all tables created.

    The process-wide appointment service (used by the agent tools) is bound
    to the same database for the duration of the test.
    """
    from assistant.db.session import get_session_factory, init_db, init_engine
    from assistant.services.appointments import AppointmentService, set_appointment_service

    engine = init_engine("sqlite://")
    init_db(engine)
    factory = get_session_factory()
    set_appointment_service(AppointmentService(factory))
    yield factory
    set_appointment_service(None)
    engine.dispose()


@pytest.fixture
def users(session_factory):
    from assistant.services.users import UserService

    return UserService(session_factory)


@pytest.fixture
def appointments(session_factory):
    from assistant.services.appointments import get_appointment_service

    return get_appointment_service()


@pytest.fixture
def chat(session_factory):
    from assistant.services.chat import ChatService

    return ChatService(session_factory)


@pytest.fixture
def alice(users):
    return users.register("alice@example.com", "Alice Example", "correct-horse-battery")


@pytest.fixture
def bob(users):
    return users.register("bob@example.com", "Bob Example", "another-long-password")


@pytest.fixture
def business_day():
    return next_business_day()


@pytest.fixture
def make_slot(business_day):
    """Factory for aligned slot start times on the test business day."""

    def _make(hour: int = 10, minute: int = 0, day: date | None = None) -> datetime:
        return slot_at(day or business_day, hour, minute)

    return _make
