"""HTTP tests for schedule admin inputs and the change feed."""

import uuid

import pytest

from hms_scheduling.modules.availability.holds import sweep_expired_holds

API = "/api/v1"


async def monday_slots(http, doctor) -> list[dict]:
    response = await http.get(
        f"{API}/availability", params={"doctorId": str(doctor.id), "from": "2025-01-06", "to": "2025-01-07"}
    )
    assert response.status_code == 200
    return response.json()["days"]


async def book_first_slot(http, doctor) -> dict:
    slot = (await monday_slots(http, doctor))[0]["slots"][0]
    held = (await http.post(
        f"{API}/availability/holds", json={"doctorId": str(doctor.id), "start": slot["start"], "end": slot["end"]}
    )).json()
    booked = await http.post(f"{API}/availability/holds/{held['holdId']}/book", json={"patientId": str(uuid.uuid4())})
    assert booked.status_code == 200
    return booked.json()


class TestTemplates:
    @pytest.mark.asyncio
    async def test_publishing_creates_new_active_revision(self, http, doctor):
        response = await http.post(f"{API}/schedules/templates", json={
            "doctorId": str(doctor.id),
            "name": "Winter",
            "weekPattern": [{"day": 2, "blocks": [{"start": "14:00", "end": "15:00", "locationId": "loc-1"}]}],
        })
        assert response.status_code == 200
        body = response.json()
        assert body["revision"] == 2
        assert body["isActive"] is True
        assert body["weekPattern"][0]["blocks"][0]["locationId"] == "loc-1"

        listed = (await http.get(f"{API}/schedules/templates", params={"doctorId": str(doctor.id)})).json()
        assert [(t["revision"], t["isActive"]) for t in listed] == [(2, True), (1, False)]

        monday, tuesday = await monday_slots(http, doctor)
        assert monday["status"] == "unavailable"
        assert [s["id"] for s in tuesday["slots"]] == ["2025-01-07T14:00_loc-1", "2025-01-07T14:15_loc-1",
                                                        "2025-01-07T14:30_loc-1", "2025-01-07T14:45_loc-1"]

    @pytest.mark.asyncio
    async def test_malformed_block_is_rejected(self, http, doctor):
        response = await http.post(f"{API}/schedules/templates", json={
            "doctorId": str(doctor.id),
            "weekPattern": [{"day": 7, "blocks": [{"start": "9am", "end": "10:00"}]}],
        })
        assert response.status_code == 400
        fields = response.json()["fields"]
        assert "weekPattern.0.day" in fields
        assert "weekPattern.0.blocks.0.start" in fields


class TestExceptionsLeavesHolidays:
    @pytest.mark.asyncio
    async def test_block_exception(self, http, doctor):
        response = await http.post(f"{API}/schedules/exceptions", json={
            "doctorId": str(doctor.id),
            "exceptionDate": "2025-01-06",
            "exceptionType": "block",
            "startTime": "10:00:00",
            "endTime": "10:30:00",
        })
        assert response.status_code == 200
        monday, _ = await monday_slots(http, doctor)
        assert monday["status"] == "unavailable"

    @pytest.mark.asyncio
    async def test_leave_and_cancel(self, http, doctor):
        created = await http.post(f"{API}/schedules/leaves", json={
            "doctorId": str(doctor.id),
            "startDatetime": "2025-01-06T00:00:00Z",
            "endDatetime": "2025-01-07T00:00:00Z",
            "reason": "Conference",
        })
        assert created.status_code == 200
        monday, _ = await monday_slots(http, doctor)
        assert monday["status"] == "leave"
        assert monday["leaveInfo"]["reason"] == "Conference"

        summary = (await http.get(f"{API}/availability/summary", params={"doctorId": str(doctor.id)})).json()
        assert summary["status"] == "on_leave"
        assert summary["leaveUntil"] == "2025-01-06"

        cancelled = await http.post(f"{API}/schedules/leaves/{created.json()['id']}/cancel")
        assert cancelled.json()["status"] == "cancelled"
        monday, _ = await monday_slots(http, doctor)
        assert monday["status"] == "available"

    @pytest.mark.asyncio
    async def test_leave_cancels_bookings_unless_kept(self, http, doctor):
        booked = await book_first_slot(http, doctor)
        kept = await http.post(f"{API}/schedules/leaves", json={
            "doctorId": str(doctor.id),
            "startDatetime": "2025-01-06T00:00:00Z",
            "endDatetime": "2025-01-07T00:00:00Z",
        })
        assert kept.status_code == 200
        still = (await http.get(f"{API}/appointments/{booked['appointmentId']}")).json()
        assert still["status"] == "booked"

        dropped = await http.post(f"{API}/schedules/leaves", json={
            "doctorId": str(doctor.id),
            "startDatetime": "2025-01-06T00:00:00Z",
            "endDatetime": "2025-01-07T00:00:00Z",
            "keepExistingBookings": False,
        })
        assert dropped.status_code == 200
        cancelled = (await http.get(f"{API}/appointments/{booked['appointmentId']}")).json()
        assert cancelled["status"] == "cancelled"
        assert cancelled["version"] == booked["version"] + 1

        feed = (await http.get(f"{API}/realtime/feed", params={"doctorId": str(doctor.id)})).json()["events"]
        changed = [e for e in feed if e["event_type"] == "APPOINTMENT_STATUS_CHANGED"]
        assert [(e["subject"]["id"], e["payload"]["from"], e["payload"]["to"]) for e in changed] == [
            (booked["appointmentId"], "booked", "cancelled")
        ]

    @pytest.mark.asyncio
    async def test_leave_needs_ordered_window(self, http, doctor):
        response = await http.post(f"{API}/schedules/leaves", json={
            "doctorId": str(doctor.id),
            "startDatetime": "2025-01-07T00:00:00Z",
            "endDatetime": "2025-01-06T00:00:00Z",
        })
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_holiday(self, http, doctor):
        response = await http.post(f"{API}/schedules/holidays", json={"holidayDate": "2025-01-06", "name": "Founders Day"})
        assert response.status_code == 200
        monday, _ = await monday_slots(http, doctor)
        assert monday["slots"] == []


class TestChangeFeed:
    @pytest.mark.asyncio
    async def test_feed_lists_events_for_doctor(self, http, doctor):
        await http.post(f"{API}/schedules/holidays", json={"holidayDate": "2025-01-08", "name": "Clinic closed"})
        await http.post(f"{API}/schedules/leaves", json={
            "doctorId": str(doctor.id),
            "startDatetime": "2025-01-08T00:00:00Z",
            "endDatetime": "2025-01-09T00:00:00Z",
        })

        everything = (await http.get(f"{API}/realtime/feed")).json()["events"]
        assert [e["event_type"] for e in everything] == ["HOLIDAY_CREATED", "LEAVE_CREATED"]

        mine = (await http.get(f"{API}/realtime/feed", params={"doctorId": str(doctor.id)})).json()["events"]
        assert [e["event_type"] for e in mine] == ["LEAVE_CREATED"]

    @pytest.mark.asyncio
    async def test_feed_reports_swept_holds_to_the_doctor(self, http, doctor, session_factory, clock):
        slot = (await monday_slots(http, doctor))[0]["slots"][0]
        await http.post(
            f"{API}/availability/holds", json={"doctorId": str(doctor.id), "start": slot["start"], "end": slot["end"]}
        )
        clock.advance(seconds=91)
        assert await sweep_expired_holds(session_factory, clock) == 1

        mine = (await http.get(f"{API}/realtime/feed", params={"doctorId": str(doctor.id)})).json()["events"]
        assert [e["event_type"] for e in mine] == ["HOLD_CREATED", "HOLDS_EXPIRED"]

    @pytest.mark.asyncio
    async def test_feed_pages_with_after_id(self, http, doctor):
        for day in ("2025-01-08", "2025-01-09"):
            await http.post(f"{API}/schedules/holidays", json={"holidayDate": day, "name": "Closed"})

        first = (await http.get(f"{API}/realtime/feed", params={"limit": 1})).json()["events"]
        cursor = {"after": first[0]["occurred_at"], "afterId": first[0]["outbox_id"]}
        rest = (await http.get(f"{API}/realtime/feed", params=cursor)).json()["events"]
        assert len(rest) == 1
        assert rest[0]["outbox_id"] != first[0]["outbox_id"]

    @pytest.mark.asyncio
    async def test_feed_rejects_naive_cursor(self, http):
        response = await http.get(f"{API}/realtime/feed", params={"after": "2025-01-06T00:00:00"})
        assert response.status_code == 400
