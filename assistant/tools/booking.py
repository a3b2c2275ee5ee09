"""LangChain tools for appointment management.

Each tool wraps an AppointmentService method and returns a human-readable
string that the LLM can use to formulate its response.  The acting user is
read from the run configuration (``config["configurable"]["user_id"]``),
which the conversation service sets per request; the model never chooses
whose appointments it touches.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date

from langchain_core.runnables import RunnableConfig
from langchain_core.tools import tool

from assistant.errors import AssistantError
from assistant.services.appointments import format_local, get_appointment_service

logger = logging.getLogger(__name__)

# Keeps a two-week availability answer within a sane prompt size
MAX_SLOTS_LISTED = 40


class _MissingUser(AssistantError):
    pass


def _user_id(config: RunnableConfig | None) -> str:
    user_id = ((config or {}).get("configurable") or {}).get("user_id")
    if not user_id:
        raise _MissingUser("No signed-in user is attached to this conversation.")
    return str(user_id)


def _parse_date(value: str, field: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ValueError(f'{field} "{value}" must be in YYYY-MM-DD format.') from None


def _describe(appt) -> str:
    tz = get_appointment_service().rules.timezone
    line = (
        f"  • Appointment ID: {appt.id}\n"
        f"    Provider: {appt.provider}\n"
        f"    Time: {format_local(appt.start_time, tz)} ({tz})\n"
        f"    Status: {appt.status}"
    )
    if appt.notes:
        line += f"\n    Notes: {appt.notes}"
    return line


# ── Tool 1: List providers ──────────────────────────────────────────


@tool
def list_providers() -> str:
    """List the providers (practitioners) that appointments can be booked with."""
    providers = get_appointment_service().list_providers()
    return "Available providers:\n" + "\n".join(f"  • {p}" for p in providers)


# ── Tool 2: Check availability ──────────────────────────────────────


@tool
def check_availability(start_date: str, end_date: str, provider: str | None = None) -> str:
    """Check free appointment slots between two dates (inclusive).

    Args:
        start_date: First day in YYYY-MM-DD format (e.g. "2026-02-17").
        end_date: Last day in YYYY-MM-DD format. At most 14 days after start_date.
        provider: Optional provider name to restrict the search to.
    """
    service = get_appointment_service()
    try:
        start = _parse_date(start_date, "start_date")
        end = _parse_date(end_date, "end_date")
        slots = service.available_slots(start, end, provider)
    except (AssistantError, ValueError) as e:
        return f"Could not check availability: {e}"

    if not slots:
        return f"No free slots between {start_date} and {end_date}. Please try different dates."

    tz = service.rules.timezone
    by_provider: dict[str, list[str]] = defaultdict(list)
    for slot in slots[:MAX_SLOTS_LISTED]:
        by_provider[slot.provider].append(format_local(slot.start_time, tz))

    lines = [
        f"Free {service.rules.slot_minutes}-minute slots ({start_date} to {end_date}, times in {tz}):",
    ]
    for name, times in by_provider.items():
        lines.append(f"\n{name}:")
        lines.extend(f"  • {t}" for t in times)
    if len(slots) > MAX_SLOTS_LISTED:
        lines.append(
            f"\n…and {len(slots) - MAX_SLOTS_LISTED} more. Narrow the dates or provider to see them.",
        )
    return "\n".join(lines)


# ── Tool 3: Book ────────────────────────────────────────────────────


@tool
def book_appointment(
    provider: str,
    start_time: str,
    notes: str | None = None,
    config: RunnableConfig = None,
) -> str:
    """Book an appointment for the current user.

    Args:
        provider: The provider's name, as returned by list_providers.
        start_time: Slot start in ISO 8601 (e.g. "2026-02-17T10:30:00").
                    Times without an offset are read in the clinic timezone.
                    Must be one of the slots returned by check_availability.
        notes: Optional reason for the visit.
    """
    try:
        appt = get_appointment_service().book(
            _user_id(config), provider, start_time, notes=notes, source="agent",
        )
    except AssistantError as e:
        logger.info("Agent booking rejected: %s", e)
        return f"The booking could not be made: {e}"
    return "Appointment booked successfully!\n" + _describe(appt)


# ── Tool 4: List the user's appointments ────────────────────────────


@tool
def list_my_appointments(include_past: bool = False, config: RunnableConfig = None) -> str:
    """List the current user's scheduled appointments.

    Args:
        include_past: Also include past, cancelled and completed appointments.
    """
    try:
        service = get_appointment_service()
        if include_past:
            appointments = service.list_for_user(_user_id(config))
        else:
            appointments = service.list_for_user(_user_id(config), status="scheduled", upcoming=True)
    except AssistantError as e:
        return f"Could not look up appointments: {e}"

    if not appointments:
        return "The user has no upcoming appointments."
    lines = [f"Found {len(appointments)} appointment(s):\n"]
    lines.extend(_describe(a) for a in appointments)
    return "\n".join(lines)


# ── Tool 5: Cancel ──────────────────────────────────────────────────


@tool
def cancel_appointment(
    appointment_id: str,
    reason: str = "Cancelled by user via chat assistant",
    config: RunnableConfig = None,
) -> str:
    """Cancel one of the current user's appointments.

    Args:
        appointment_id: The appointment ID. Obtain it from list_my_appointments first.
        reason: The reason for cancellation.
    """
    try:
        appt = get_appointment_service().cancel(
            _user_id(config), appointment_id, reason=reason, source="agent",
        )
    except AssistantError as e:
        return f"The appointment could not be cancelled: {e}"
    return "Appointment cancelled.\n" + _describe(appt)


# ── Tool 6: Reschedule ──────────────────────────────────────────────


@tool
def reschedule_appointment(
    appointment_id: str,
    new_start_time: str,
    provider: str | None = None,
    config: RunnableConfig = None,
) -> str:
    """Move one of the current user's appointments to a new slot.

    The change is atomic: if the new slot is taken the original booking stays.

    Args:
        appointment_id: The appointment ID. Obtain it from list_my_appointments first.
        new_start_time: New slot start in ISO 8601 (e.g. "2026-02-20T14:00:00").
        provider: Optional new provider; defaults to the current one.
    """
    try:
        appt = get_appointment_service().reschedule(
            _user_id(config), appointment_id, new_start_time, provider=provider, source="agent",
        )
    except AssistantError as e:
        return f"The appointment could not be rescheduled: {e}"
    return "Appointment rescheduled.\n" + _describe(appt)


BOOKING_TOOLS = [
    list_providers,
    check_availability,
    book_appointment,
    list_my_appointments,
    cancel_appointment,
    reschedule_appointment,
]
