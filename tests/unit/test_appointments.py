"""Tests for the appointment status machine."""

import uuid
from datetime import datetime, timezone

import pytest

from hms_scheduling.core.errors import Conflict, InvalidRequest, NotFound
from hms_scheduling.modules.appointments.service import AppointmentService, VALID_NEXT
from hms_scheduling.modules.availability.holds import HoldService
from hms_scheduling.modules.availability.schemas import BookRequest, HoldCreate

NINE = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)
NINE_THIRTY = datetime(2025, 1, 6, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
async def held(session_factory, clock, doctor):
    async with session_factory() as s:
        return await HoldService(s, clock).hold(HoldCreate(doctor_id=doctor.id, start=NINE, end=NINE_THIRTY))


@pytest.fixture
async def booked(session_factory, clock, held):
    async with session_factory() as s:
        return await HoldService(s, clock).book(held.id, BookRequest(patient_id=uuid.uuid4()))


class TestStatusMachine:
    def test_terminal_states_have_no_exits(self):
        for status in ("completed", "cancelled", "no_show"):
            assert VALID_NEXT[status] == set()

    @pytest.mark.asyncio
    async def test_check_in_then_complete(self, session_factory, booked):
        async with session_factory() as s:
            checked_in = await AppointmentService(s).change_status(booked.id, "checked_in", booked.version)
        assert checked_in.status == "checked_in"
        assert checked_in.version == booked.version + 1

        async with session_factory() as s:
            done = await AppointmentService(s).change_status(booked.id, "completed", checked_in.version)
        assert done.status == "completed"

    @pytest.mark.asyncio
    async def test_invalid_transition(self, session_factory, booked):
        async with session_factory() as s:
            with pytest.raises(InvalidRequest):
                await AppointmentService(s).change_status(booked.id, "completed", booked.version)

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, session_factory, booked):
        async with session_factory() as s:
            with pytest.raises(Conflict):
                await AppointmentService(s).change_status(booked.id, "cancelled", booked.version - 1)

    @pytest.mark.asyncio
    async def test_held_appointments_use_hold_endpoints(self, session_factory, held):
        async with session_factory() as s:
            with pytest.raises(InvalidRequest):
                await AppointmentService(s).change_status(held.id, "booked", held.version)

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, session_factory):
        async with session_factory() as s:
            with pytest.raises(NotFound):
                await AppointmentService(s).get(uuid.uuid4())
