"""Gateway routes: appointment CRUD and availability for the signed-in user."""

from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, status

from assistant.api.deps import get_appointments, get_current_user
from assistant.api.schemas import (
    AppointmentCreate,
    AppointmentOut,
    AppointmentUpdate,
    AvailabilityResponse,
    ProvidersResponse,
    SlotOut,
)
from assistant.db.models import AppointmentStatus, User
from assistant.services.appointments import UNCHANGED

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.get("", response_model=list[AppointmentOut])
def list_appointments(
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    upcoming: bool = False,
    user: User = Depends(get_current_user),
    appointments=Depends(get_appointments),
):
    return appointments.list_for_user(
        user.id,
        status=status_filter.value if status_filter else None,
        upcoming=upcoming,
    )


@router.get("/providers", response_model=ProvidersResponse)
def list_providers(
    user: User = Depends(get_current_user),
    appointments=Depends(get_appointments),
):
    return ProvidersResponse(providers=appointments.list_providers())


@router.get("/availability", response_model=AvailabilityResponse)
def availability(
    start_date: date,
    end_date: date,
    provider: str | None = None,
    user: User = Depends(get_current_user),
    appointments=Depends(get_appointments),
):
    slots = appointments.available_slots(start_date, end_date, provider)
    return AvailabilityResponse(
        start_date=start_date,
        end_date=end_date,
        timezone=appointments.rules.timezone,
        slots=[SlotOut.model_validate(s) for s in slots],
    )


@router.post("", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
def book(
    body: AppointmentCreate,
    user: User = Depends(get_current_user),
    appointments=Depends(get_appointments),
):
    return appointments.book(user.id, body.provider, body.start_time, notes=body.notes, source="api")


@router.get("/{appointment_id}", response_model=AppointmentOut)
def get_appointment(
    appointment_id: uuid.UUID,
    user: User = Depends(get_current_user),
    appointments=Depends(get_appointments),
):
    return appointments.get_for_user(user.id, appointment_id)


@router.patch("/{appointment_id}", response_model=AppointmentOut)
def update_appointment(
    appointment_id: uuid.UUID,
    body: AppointmentUpdate,
    user: User = Depends(get_current_user),
    appointments=Depends(get_appointments),
):
    """Reschedule (new ``start_time`` and/or ``provider``) and/or edit notes."""
    notes_given = "notes" in body.model_fields_set
    if body.start_time is not None or body.provider is not None:
        return appointments.reschedule(
            user.id,
            appointment_id,
            body.start_time,
            provider=body.provider,
            notes=body.notes if notes_given else UNCHANGED,
            source="api",
        )
    if notes_given:
        return appointments.update_notes(user.id, appointment_id, body.notes)
    return appointments.get_for_user(user.id, appointment_id)


@router.delete("/{appointment_id}", response_model=AppointmentOut)
def cancel(
    appointment_id: uuid.UUID,
    reason: str | None = Query(None, max_length=500),
    user: User = Depends(get_current_user),
    appointments=Depends(get_appointments),
):
    return appointments.cancel(user.id, appointment_id, reason=reason, source="api")
