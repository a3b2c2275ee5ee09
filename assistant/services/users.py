"""User accounts: registration, credential checks and lookups."""

from __future__ import annotations

import logging
import re
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from assistant.db.models import User
from assistant.db.session import get_session_factory, session_scope
from assistant.errors import (
    AuthenticationError,
    EmailAlreadyRegisteredError,
    InvalidRequestError,
    NotFoundError,
)
from assistant.services.security import hash_password, verify_password

logger = logging.getLogger(__name__)

# RFC 5322-ish pattern; covers the vast majority of real-world emails
# without requiring an external dependency.
_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)

MIN_PASSWORD_LENGTH = 8


def validate_email(email: str) -> str | None:
    """Return an error message if *email* looks invalid, else ``None``."""
    if not email or not email.strip():
        return "No email address was provided."
    email = email.strip()
    if not _EMAIL_RE.match(email):
        return f'"{email}" does not look like a valid email address.'
    return None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def as_uuid(value: uuid.UUID | str, what: str = "id") -> uuid.UUID:
    """Coerce *value* to a UUID, raising ``NotFoundError`` for garbage."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFoundError(f"Unknown {what}: {value}") from None


class UserService:
    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    def register(self, email: str, full_name: str, password: str) -> User:
        error = validate_email(email)
        if error:
            raise InvalidRequestError(error)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidRequestError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.",
            )
        full_name = full_name.strip()
        if not full_name:
            raise InvalidRequestError("Full name is required.")

        email = normalize_email(email)
        user = User(email=email, full_name=full_name, password_hash=hash_password(password))
        try:
            with session_scope(self._session_factory) as session:
                session.add(user)
                session.flush()
        except IntegrityError:
            raise EmailAlreadyRegisteredError(
                f"An account with email {email} already exists.",
            ) from None
        logger.info("Registered user %s", user.id)
        return user

    def authenticate(self, email: str, password: str) -> User:
        with session_scope(self._session_factory) as session:
            user = session.scalar(select(User).where(User.email == normalize_email(email)))
        if user is None or not user.is_active or not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid email or password.")
        return user

    def get(self, user_id: uuid.UUID | str) -> User:
        with session_scope(self._session_factory) as session:
            user = session.get(User, as_uuid(user_id, "user"))
        if user is None:
            raise NotFoundError(f"Unknown user: {user_id}")
        return user

    def get_by_email(self, email: str) -> User | None:
        with session_scope(self._session_factory) as session:
            return session.scalar(select(User).where(User.email == normalize_email(email)))
