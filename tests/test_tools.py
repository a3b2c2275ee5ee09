"""Tests for the LangChain booking tools."""

from __future__ import annotations

from datetime import timedelta

import pytest

from assistant.tools.booking import (
    BOOKING_TOOLS,
    MAX_SLOTS_LISTED,
    book_appointment,
    cancel_appointment,
    check_availability,
    list_my_appointments,
    list_providers,
    reschedule_appointment,
)


def _config(user) -> dict:
    return {"configurable": {"user_id": str(user.id)}}


@pytest.fixture(autouse=True)
def _database(session_factory):
    """Every tool talks to the process-wide appointment service."""
    yield


class TestRegistry:
    def test_all_tools_exported(self):
        assert [t.name for t in BOOKING_TOOLS] == [
            "list_providers",
            "check_availability",
            "book_appointment",
            "list_my_appointments",
            "cancel_appointment",
            "reschedule_appointment",
        ]

    def test_config_is_hidden_from_the_model(self):
        assert "config" not in book_appointment.args
        assert set(book_appointment.args) == {"provider", "start_time", "notes"}


class TestListProviders:
    def test_lists_configured_providers(self):
        result = list_providers.invoke({})
        assert result.startswith("Available providers:")
        assert "Dr. Alice Smith" in result
        assert "Dr. Raj Patel" in result


class TestCheckAvailability:
    def test_lists_slots_grouped_by_provider(self, business_day):
        day = business_day.isoformat()
        result = check_availability.invoke(
            {"start_date": day, "end_date": day, "provider": "Dr. Raj Patel"},
        )
        assert "Dr. Raj Patel:" in result
        assert "Dr. Alice Smith:" not in result
        assert "09:00" in result
        assert "16:30" in result

    def test_truncates_long_answers(self, business_day):
        end = (business_day + timedelta(days=6)).isoformat()
        result = check_availability.invoke({"start_date": business_day.isoformat(), "end_date": end})
        assert "more. Narrow the dates" in result
        assert result.count("  • ") == MAX_SLOTS_LISTED

    def test_bad_date_format(self):
        result = check_availability.invoke({"start_date": "17/02/2026", "end_date": "2026-02-18"})
        assert result.startswith("Could not check availability:")
        assert "YYYY-MM-DD" in result

    def test_unknown_provider(self, business_day):
        day = business_day.isoformat()
        result = check_availability.invoke({"start_date": day, "end_date": day, "provider": "Dr. Who"})
        assert "Could not check availability: Unknown provider" in result

    def test_no_slots(self, business_day):
        saturday = business_day
        while saturday.weekday() != 5:
            saturday += timedelta(days=1)
        day = saturday.isoformat()
        result = check_availability.invoke({"start_date": day, "end_date": day})
        assert result.startswith("No free slots between")


class TestBookAppointment:
    def test_books_for_configured_user(self, alice, appointments, make_slot):
        result = book_appointment.invoke(
            {"provider": "dr. alice smith", "start_time": make_slot(10).isoformat(), "notes": "Checkup"},
            config=_config(alice),
        )
        assert result.startswith("Appointment booked successfully!")
        assert "Dr. Alice Smith" in result
        assert "Notes: Checkup" in result

        booked, = appointments.list_for_user(alice.id)
        assert booked.meta["source"] == "agent"

    def test_taken_slot_is_explained(self, alice, bob, appointments, make_slot):
        appointments.book(bob.id, "Dr. Alice Smith", make_slot(10))
        result = book_appointment.invoke(
            {"provider": "Dr. Alice Smith", "start_time": make_slot(10).isoformat()},
            config=_config(alice),
        )
        assert result.startswith("The booking could not be made:")
        assert "already booked" in result

    def test_missing_user_in_config(self, make_slot):
        result = book_appointment.invoke(
            {"provider": "Dr. Alice Smith", "start_time": make_slot(10).isoformat()},
        )
        assert "No signed-in user" in result


class TestListMyAppointments:
    def test_only_own_upcoming(self, alice, bob, appointments, make_slot):
        mine = appointments.book(alice.id, "Dr. Alice Smith", make_slot(10))
        appointments.book(bob.id, "Dr. Raj Patel", make_slot(10))
        cancelled = appointments.book(alice.id, "Dr. Alice Smith", make_slot(11))
        appointments.cancel(alice.id, cancelled.id)

        result = list_my_appointments.invoke({}, config=_config(alice))
        assert result.startswith("Found 1 appointment(s)")
        assert str(mine.id) in result
        assert str(cancelled.id) not in result

    def test_include_past(self, alice, appointments, make_slot):
        appt = appointments.book(alice.id, "Dr. Alice Smith", make_slot(10))
        appointments.cancel(alice.id, appt.id)
        result = list_my_appointments.invoke({"include_past": True}, config=_config(alice))
        assert "Status: cancelled" in result

    def test_none(self, alice):
        assert list_my_appointments.invoke({}, config=_config(alice)) == (
            "The user has no upcoming appointments."
        )


class TestCancelAppointment:
    def test_cancel(self, alice, appointments, make_slot):
        appt = appointments.book(alice.id, "Dr. Alice Smith", make_slot(10))
        result = cancel_appointment.invoke({"appointment_id": str(appt.id)}, config=_config(alice))
        assert result.startswith("Appointment cancelled.")
        assert appointments.get_for_user(alice.id, appt.id).meta["cancelled_via"] == "agent"

    def test_cannot_cancel_someone_elses(self, alice, bob, appointments, make_slot):
        appt = appointments.book(alice.id, "Dr. Alice Smith", make_slot(10))
        result = cancel_appointment.invoke({"appointment_id": str(appt.id)}, config=_config(bob))
        assert result.startswith("The appointment could not be cancelled:")
        assert appointments.get_for_user(alice.id, appt.id).status == "scheduled"


class TestRescheduleAppointment:
    def test_reschedule(self, alice, appointments, make_slot):
        appt = appointments.book(alice.id, "Dr. Alice Smith", make_slot(10))
        result = reschedule_appointment.invoke(
            {"appointment_id": str(appt.id), "new_start_time": make_slot(15).isoformat()},
            config=_config(alice),
        )
        assert result.startswith("Appointment rescheduled.")
        assert appointments.get_for_user(alice.id, appt.id).start_time == make_slot(15)

    def test_conflict_is_explained(self, alice, bob, appointments, make_slot):
        appointments.book(bob.id, "Dr. Alice Smith", make_slot(15))
        appt = appointments.book(alice.id, "Dr. Alice Smith", make_slot(10))
        result = reschedule_appointment.invoke(
            {"appointment_id": str(appt.id), "new_start_time": make_slot(15).isoformat()},
            config=_config(alice),
        )
        assert result.startswith("The appointment could not be rescheduled:")
        assert appointments.get_for_user(alice.id, appt.id).start_time == make_slot(10)
