"""Tests for the async API client and the client-side hold manager."""

import uuid
import asyncio
from datetime import date

import httpx
import pytest
from httpx import ASGITransport

from hms_scheduling.client.availability_client import AvailabilityClient, ClientError
from hms_scheduling.client.preview import preview_availability
from hms_scheduling.client.slot_hold import SlotHold
from hms_scheduling.modules.availability.slot_generator import SlotGeneratorContext

MONDAY = date(2025, 1, 6)


@pytest.fixture
async def client(app):
    async with AvailabilityClient("http://test/api/v1", transport=ASGITransport(app=app)) as c:
        yield c


async def first_slot(client, doctor):
    availability = await client.get_availability(doctor.id, MONDAY, MONDAY)
    return availability.days[0].slots[0]


class TestAvailabilityClient:
    @pytest.mark.asyncio
    async def test_get_availability(self, client, doctor):
        availability = await client.get_availability(doctor.id, MONDAY, MONDAY)
        assert availability.doctor_id == doctor.id
        assert len(availability.days[0].slots) == 6

    @pytest.mark.asyncio
    async def test_unknown_doctor_raises(self, client):
        with pytest.raises(ClientError) as exc:
            await client.get_availability(uuid.uuid4(), MONDAY, MONDAY)
        assert exc.value.status_code == 404
        assert exc.value.code == "not_found"

    @pytest.mark.asyncio
    async def test_hold_conflict_is_a_result(self, client, doctor):
        slot = await first_slot(client, doctor)
        first = await client.hold(doctor.id, slot.start, slot.end)
        second = await client.hold(doctor.id, slot.start, slot.end)
        assert first.success is True
        assert second.success is False
        assert second.error == "slot_unavailable"

    @pytest.mark.asyncio
    async def test_retries_server_errors_with_backoff(self):
        calls = []
        delays = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            if len(calls) < 3:
                return httpx.Response(500, json={"error": "internal_error", "message": "boom"})
            return httpx.Response(200, json={"doctorId": str(uuid.uuid4()), "doctorName": "Dr. Lee", "status": "no_schedule"})

        async def fake_sleep(seconds):
            delays.append(seconds)

        async with AvailabilityClient("http://test/api/v1", transport=httpx.MockTransport(handler), sleep=fake_sleep) as c:
            summary = await c.get_summary(uuid.uuid4())

        assert summary.status == "no_schedule"
        assert calls == ["/api/v1/availability/summary"] * 3
        assert delays == [1, 2]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"error": "internal_error", "message": "down"})

        async def fake_sleep(seconds):
            pass

        async with AvailabilityClient("http://test/api/v1", transport=httpx.MockTransport(handler), max_retries=2, sleep=fake_sleep) as c:
            with pytest.raises(ClientError) as exc:
                await c.get_summary(uuid.uuid4())
        assert exc.value.status_code == 503


class TestSlotHold:
    @pytest.mark.asyncio
    async def test_hold_and_confirm(self, client, doctor, clock):
        slot = await first_slot(client, doctor)
        holder = SlotHold(client, clock=clock)

        result = await holder.hold(doctor.id, slot)
        assert result.success
        assert holder.is_holding
        assert holder.remaining_seconds() == 90

        clock.advance(seconds=30)
        assert holder.remaining_seconds() == 60

        booking = await holder.confirm(uuid.uuid4(), patient_name="Meera Shah")
        assert booking.success
        assert booking.status == "booked"
        assert not holder.is_holding

    @pytest.mark.asyncio
    async def test_countdown_fires_on_expired(self, client, doctor, clock):
        expired = asyncio.Event()
        slot = await first_slot(client, doctor)
        holder = SlotHold(client, clock=clock, on_expired=expired.set, tick_seconds=0.01)

        await holder.hold(doctor.id, slot)
        clock.advance(seconds=90)
        await asyncio.wait_for(expired.wait(), timeout=2)

        assert not holder.is_holding
        assert holder.remaining_seconds() == 0

    @pytest.mark.asyncio
    async def test_holding_another_slot_releases_the_first(self, client, doctor, clock):
        availability = await client.get_availability(doctor.id, MONDAY, MONDAY)
        first, second = availability.days[0].slots[:2]
        holder = SlotHold(client, clock=clock)

        await holder.hold(doctor.id, first)
        await holder.hold(doctor.id, second)

        ids = [s.id for s in (await client.get_availability(doctor.id, MONDAY, MONDAY)).days[0].slots]
        assert first.id in ids
        assert second.id not in ids
        await holder.release()

    @pytest.mark.asyncio
    async def test_context_change_releases_hold(self, client, doctor, clock):
        slot = await first_slot(client, doctor)
        holder = SlotHold(client, clock=clock)
        await holder.select_context(doctor.id, MONDAY, "in_person")
        await holder.hold(doctor.id, slot)

        await holder.select_context(doctor.id, MONDAY, "in_person")
        assert holder.is_holding

        await holder.select_context(doctor.id, MONDAY, "telehealth")
        assert not holder.is_holding
        ids = [s.id for s in (await client.get_availability(doctor.id, MONDAY, MONDAY)).days[0].slots]
        assert slot.id in ids

    @pytest.mark.asyncio
    async def test_confirm_without_hold(self, client):
        result = await SlotHold(client).confirm(uuid.uuid4())
        assert result.success is False
        assert result.error == "no_hold"


def test_preview_matches_server_pipeline(clock):
    ctx = SlotGeneratorContext(
        timezone="UTC", default_duration=30, default_buffer=0, min_lead_time=0, max_future_days=60,
        week_pattern=[{"day": 1, "blocks": [{"start": "09:00", "end": "10:00"}]}],
    )
    days = preview_availability(ctx, MONDAY, MONDAY, clock)
    assert [s.id for s in days[0].slots] == ["2025-01-06T09:00_default", "2025-01-06T09:30_default"]
