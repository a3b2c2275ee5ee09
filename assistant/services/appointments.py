"""Appointment scheduling: availability, booking, cancellation, rescheduling.

Slots are ``SLOT_MINUTES`` long and aligned to the start of business hours in
the clinic timezone.  Double-booking is prevented by the partial unique index
on ``(provider, start_time)`` (see ``db/models.py``): writes simply insert or
update and translate an ``IntegrityError`` into :class:`SlotUnavailableError`,
so two concurrent requests for the same slot cannot both succeed.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from assistant.config import (
    BOOKING_HORIZON_DAYS,
    BUSINESS_DAYS,
    BUSINESS_HOURS_END,
    BUSINESS_HOURS_START,
    CLINIC_TIMEZONE,
    MAX_AVAILABILITY_DAYS,
    PROVIDERS,
    SLOT_MINUTES,
)
from assistant.db.models import Appointment, AppointmentStatus, User
from assistant.db.session import get_session_factory, session_scope
from assistant.errors import InvalidRequestError, NotFoundError, SlotUnavailableError
from assistant.services.interactions import add_interaction
from assistant.services.users import as_uuid

logger = logging.getLogger(__name__)

# Sentinel for "leave this field alone" where None is a meaningful value
UNCHANGED: Any = object()


@dataclass(frozen=True)
class Slot:
    provider: str
    start_time: datetime
    end_time: datetime


@dataclass(frozen=True)
class ScheduleRules:
    """Clinic opening rules used to build and validate the slot grid."""

    providers: tuple[str, ...] = tuple(PROVIDERS)
    timezone: str = CLINIC_TIMEZONE
    slot_minutes: int = SLOT_MINUTES
    hours_start: int = BUSINESS_HOURS_START
    hours_end: int = BUSINESS_HOURS_END
    business_days: tuple[int, ...] = tuple(BUSINESS_DAYS)
    horizon_days: int = BOOKING_HORIZON_DAYS

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def format_local(dt: datetime, tz: str = CLINIC_TIMEZONE) -> str:
    """Render *dt* as 'Mon 17 Feb 2026 at 10:30' in the clinic timezone."""
    return dt.astimezone(ZoneInfo(tz)).strftime("%a %d %b %Y at %H:%M")


def parse_datetime(value: str | datetime, tz: str = CLINIC_TIMEZONE) -> datetime:
    """Parse an ISO 8601 string; naive values are read in the clinic timezone."""
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise InvalidRequestError(
                f'"{value}" is not a valid ISO 8601 date-time (e.g. 2026-02-17T10:30:00).',
            ) from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=ZoneInfo(tz))
    return dt.astimezone(UTC)


class AppointmentService:
    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        *,
        rules: ScheduleRules | None = None,
        clock=None,
    ) -> None:
        self._session_factory = session_factory or get_session_factory()
        self.rules = rules or ScheduleRules()
        self._clock = clock or (lambda: datetime.now(UTC))

    # ── Slot grid ────────────────────────────────────────────────────

    def list_providers(self) -> list[str]:
        return list(self.rules.providers)

    def resolve_provider(self, name: str) -> str:
        """Map a case-insensitive provider name onto its canonical spelling."""
        wanted = (name or "").strip().lower()
        for provider in self.rules.providers:
            if provider.lower() == wanted:
                return provider
        raise InvalidRequestError(
            f'Unknown provider "{name}". Available providers: {", ".join(self.rules.providers)}.',
        )

    def _day_grid(self, day: date) -> list[datetime]:
        """UTC start times of every slot on *day* (clinic-local), empty on closed days."""
        if day.weekday() not in self.rules.business_days:
            return []
        tz = self.rules.tz
        step = timedelta(minutes=self.rules.slot_minutes)
        cursor = datetime.combine(day, time(self.rules.hours_start), tzinfo=tz)
        close = datetime.combine(day, time(self.rules.hours_end), tzinfo=tz)
        starts = []
        while cursor + step <= close:
            starts.append(cursor.astimezone(UTC))
            cursor += step
        return starts

    def validate_slot(self, provider: str, start_time: str | datetime) -> tuple[str, datetime]:
        """Check that a provider/time pair is a bookable slot.

        Returns the canonical provider name and the UTC start time.
        """
        provider = self.resolve_provider(provider)
        start = parse_datetime(start_time, self.rules.timezone)
        local = start.astimezone(self.rules.tz)

        if start not in self._day_grid(local.date()):
            raise InvalidRequestError(
                f"{format_local(start, self.rules.timezone)} is not a valid appointment slot. "
                f"Appointments are {self.rules.slot_minutes} minutes long, on business days "
                f"between {self.rules.hours_start:02d}:00 and {self.rules.hours_end:02d}:00.",
            )
        now = self._clock()
        if start <= now:
            raise InvalidRequestError("That time is in the past. Please choose a future slot.")
        if start > now + timedelta(days=self.rules.horizon_days):
            raise InvalidRequestError(
                f"Appointments can be booked at most {self.rules.horizon_days} days ahead.",
            )
        return provider, start

    def available_slots(
        self,
        start_date: date,
        end_date: date,
        provider: str | None = None,
    ) -> list[Slot]:
        """Free future slots between two dates (inclusive), ordered by time then provider."""
        if end_date < start_date:
            raise InvalidRequestError("end_date must not be before start_date.")
        if (end_date - start_date).days + 1 > MAX_AVAILABILITY_DAYS:
            raise InvalidRequestError(
                f"Availability can be checked for at most {MAX_AVAILABILITY_DAYS} days at a time.",
            )
        providers = [self.resolve_provider(provider)] if provider else self.list_providers()

        grid: list[datetime] = []
        day = start_date
        while day <= end_date:
            grid.extend(self._day_grid(day))
            day += timedelta(days=1)
        if not grid:
            return []

        with session_scope(self._session_factory) as session:
            taken = {
                (row.provider, row.start_time)
                for row in session.execute(
                    select(Appointment.provider, Appointment.start_time).where(
                        Appointment.provider.in_(providers),
                        Appointment.status != AppointmentStatus.cancelled.value,
                        Appointment.start_time >= grid[0],
                        Appointment.start_time <= grid[-1],
                    )
                )
            }

        now = self._clock()
        horizon = now + timedelta(days=self.rules.horizon_days)
        step = timedelta(minutes=self.rules.slot_minutes)
        return [
            Slot(provider=p, start_time=start, end_time=start + step)
            for start in grid
            if now < start <= horizon
            for p in providers
            if (p, start) not in taken
        ]

    # ── Reads ────────────────────────────────────────────────────────

    def list_for_user(
        self,
        user_id: uuid.UUID | str,
        *,
        status: str | None = None,
        upcoming: bool = False,
    ) -> list[Appointment]:
        stmt = select(Appointment).where(Appointment.user_id == as_uuid(user_id, "user"))
        if status:
            stmt = stmt.where(Appointment.status == status)
        if upcoming:
            stmt = stmt.where(Appointment.start_time > self._clock())
        stmt = stmt.order_by(Appointment.start_time)
        with session_scope(self._session_factory) as session:
            return list(session.scalars(stmt))

    def get_for_user(self, user_id: uuid.UUID | str, appointment_id: uuid.UUID | str) -> Appointment:
        with session_scope(self._session_factory) as session:
            return self._owned(session, user_id, appointment_id)

    @staticmethod
    def _owned(session: Session, user_id, appointment_id) -> Appointment:
        # Someone else's appointment is indistinguishable from a missing one
        appt = session.get(Appointment, as_uuid(appointment_id, "appointment"))
        if appt is None or appt.user_id != as_uuid(user_id, "user"):
            raise NotFoundError(f"Appointment {appointment_id} was not found.")
        return appt

    # ── Writes ───────────────────────────────────────────────────────

    def book(
        self,
        user_id: uuid.UUID | str,
        provider: str,
        start_time: str | datetime,
        *,
        notes: str | None = None,
        source: str = "api",
        meta: dict[str, Any] | None = None,
    ) -> Appointment:
        provider, start = self.validate_slot(provider, start_time)
        user_uuid = as_uuid(user_id, "user")
        appt = Appointment(
            user_id=user_uuid,
            provider=provider,
            start_time=start,
            end_time=start + timedelta(minutes=self.rules.slot_minutes),
            status=AppointmentStatus.scheduled.value,
            notes=notes,
            meta={**(meta or {}), "source": source},
        )
        try:
            with session_scope(self._session_factory) as session:
                if session.get(User, user_uuid) is None:
                    raise NotFoundError(f"Unknown user: {user_id}")
                session.add(appt)
                session.flush()
                add_interaction(
                    session, "appointment_booked",
                    user_id=user_uuid, source=source,
                    appointment_id=str(appt.id), provider=provider, start_time=start.isoformat(),
                )
        except IntegrityError:
            raise SlotUnavailableError(
                f"{provider} is already booked at {format_local(start, self.rules.timezone)}.",
            ) from None
        logger.info("Booked appointment %s with %s at %s", appt.id, provider, start.isoformat())
        return appt

    def cancel(
        self,
        user_id: uuid.UUID | str,
        appointment_id: uuid.UUID | str,
        *,
        reason: str | None = None,
        source: str = "api",
    ) -> Appointment:
        with session_scope(self._session_factory) as session:
            appt = self._owned(session, user_id, appointment_id)
            if appt.status == AppointmentStatus.cancelled.value:
                raise InvalidRequestError("That appointment is already cancelled.")
            if appt.start_time <= self._clock():
                raise InvalidRequestError("Past appointments cannot be cancelled.")
            appt.status = AppointmentStatus.cancelled.value
            appt.meta = {**(appt.meta or {}), "cancel_reason": reason, "cancelled_via": source}
            add_interaction(
                session, "appointment_cancelled",
                user_id=appt.user_id, source=source, appointment_id=str(appt.id), reason=reason,
            )
        logger.info("Cancelled appointment %s", appt.id)
        return appt

    def reschedule(
        self,
        user_id: uuid.UUID | str,
        appointment_id: uuid.UUID | str,
        new_start_time: str | datetime | None,
        *,
        provider: str | None = None,
        notes: str | None = UNCHANGED,
        source: str = "api",
    ) -> Appointment:
        """Move an appointment to a new slot in place.

        A ``None`` start time keeps the current one (provider-only move).
        ``notes``, when given, are written in the same transaction.  The row
        keeps its ID; on a slot conflict the transaction rolls back and the
        original booking is left untouched.
        """
        try:
            with session_scope(self._session_factory) as session:
                appt = self._owned(session, user_id, appointment_id)
                if appt.status != AppointmentStatus.scheduled.value:
                    raise InvalidRequestError(
                        f"Only scheduled appointments can be rescheduled (this one is {appt.status}).",
                    )
                new_provider, new_start = self.validate_slot(
                    provider or appt.provider, new_start_time or appt.start_time,
                )
                if new_provider == appt.provider and new_start == appt.start_time:
                    raise InvalidRequestError("The appointment is already at that time.")

                previous = {"provider": appt.provider, "start_time": appt.start_time.isoformat()}
                appt.provider = new_provider
                appt.start_time = new_start
                appt.end_time = new_start + timedelta(minutes=self.rules.slot_minutes)
                if notes is not UNCHANGED:
                    appt.notes = notes
                history = list((appt.meta or {}).get("reschedule_history", []))
                appt.meta = {**(appt.meta or {}), "reschedule_history": history + [previous]}
                session.flush()
                add_interaction(
                    session, "appointment_rescheduled",
                    user_id=appt.user_id, source=source, appointment_id=str(appt.id),
                    previous=previous, provider=new_provider, start_time=new_start.isoformat(),
                )
        except IntegrityError:
            raise SlotUnavailableError(
                f"{new_provider} is already booked at {format_local(new_start, self.rules.timezone)}.",
            ) from None
        logger.info("Rescheduled appointment %s to %s", appt.id, new_start.isoformat())
        return appt

    def update_notes(
        self, user_id: uuid.UUID | str, appointment_id: uuid.UUID | str, notes: str | None,
    ) -> Appointment:
        with session_scope(self._session_factory) as session:
            appt = self._owned(session, user_id, appointment_id)
            appt.notes = notes
        return appt


# ── Module-level singleton (thread-safe) ────────────────────────────
_service: AppointmentService | None = None
_service_lock = threading.Lock()


def get_appointment_service() -> AppointmentService:
    """Return a module-level AppointmentService bound to the process engine."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = AppointmentService()
    return _service


def set_appointment_service(service: AppointmentService | None) -> None:
    """Install (or clear) the process-wide service, e.g. after ``init_engine``."""
    global _service
    with _service_lock:
        _service = service
