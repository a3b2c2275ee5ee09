"""Domain exceptions raised by the service layer.

The HTTP apps translate these into status codes (see ``api/handlers.py``);
the agent tools translate them into plain-text explanations for the LLM.
"""

from __future__ import annotations


class AssistantError(Exception):
    """Base class for every expected, user-facing failure."""

    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(AssistantError):
    status_code = 404


class InvalidRequestError(AssistantError):
    status_code = 400


class AuthenticationError(AssistantError):
    status_code = 401


class ConflictError(AssistantError):
    status_code = 409


class SlotUnavailableError(ConflictError):
    """The provider already has a non-cancelled appointment in that slot."""


class EmailAlreadyRegisteredError(ConflictError):
    pass
