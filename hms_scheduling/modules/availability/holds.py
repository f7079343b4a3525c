"""
Slot holds and booking finalization.

A hold is an appointment row in ``held`` status with ``hold_expires_at`` set.
Who gets a contested slot is decided by the store. A hold locks the doctor row
(SELECT ... FOR UPDATE) before reading occupancy, so overlapping windows with
different starts are serialized per doctor; the partial unique index on
(doctor_id, start_time, seat) still lets exactly one insert per seat through.
Release, expiry and booking are single conditional UPDATEs.
"""

import uuid
import asyncio
import logging
from datetime import timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hms_scheduling.core.clock import Clock, system_clock
from hms_scheduling.core.config import settings
from hms_scheduling.core.errors import Conflict, Expired, HoldNotFound, NotFound, SlotTaken
from hms_scheduling.modules.appointments.models import Appointment
from hms_scheduling.modules.appointments.repository import AppointmentRepository, AppointmentTypeRepository
from hms_scheduling.modules.availability.schemas import HoldCreate, BookRequest
from hms_scheduling.modules.availability.service import AvailabilityService
from hms_scheduling.modules.availability.slot_generator import generate_slots, get_tz
from hms_scheduling.modules.events.outbox import OutboxService

logger = logging.getLogger(__name__)
sweeper_log = logging.getLogger("holds.sweeper")

SLOT_UNAVAILABLE = "This time is no longer available, please choose another."

def _lowest_free_seat(taken: list[int]) -> int:
    seat = 0
    used = set(taken)
    while seat in used:
        seat += 1
    return seat

class HoldService:
    def __init__(self, s: AsyncSession, clock: Clock = system_clock, hold_seconds: int | None = None):
        self.s = s
        self.clock = clock
        self.hold_seconds = hold_seconds or settings.HOLD_DURATION_SECONDS
        self.appts = AppointmentRepository(s)
        self.types = AppointmentTypeRepository(s)
        self.availability = AvailabilityService(s, clock)
        self.outbox = OutboxService(s)

    async def _release_session(self, session_id: str) -> None:
        prior = await self.appts.active_session_holds(session_id)
        for appt in prior:
            if await self.appts.release_hold(appt.id, reason="superseded"):
                await self.outbox.enqueue("HOLD_RELEASED", "appointment", appt.id, {"reason": "superseded"}, doctor_id=appt.doctor_id)
        if prior:
            await self.s.commit()
            logger.info("Released %d prior hold(s) for session %s", len(prior), session_id)

    async def hold(self, req: HoldCreate) -> Appointment:
        doctor = await self.availability.get_doctor(req.doctor_id)
        # rollback expires ORM instances; only plain values are read after one
        doctor_id = doctor.id
        tz = get_tz(doctor.timezone)
        if req.session_id:
            await self._release_session(req.session_id)

        # holds for one doctor are serialized from here to commit
        await self.availability.directory.lock_doctor(doctor_id)
        now = self.clock.now()
        for appt_id, _ in await self.appts.expire_holds(now, doctor_id=doctor_id):
            await self.outbox.enqueue("HOLDS_EXPIRED", "appointment", appt_id, {"reason": "expired"}, doctor_id=doctor_id)

        # the requested window must still be an offered slot
        day = req.start.astimezone(tz).date()
        ctx = await self.availability.build_context(
            doctor, day, day,
            mode=req.mode, location_id=req.location_id, appointment_type_id=req.appointment_type_id,
        )
        slot = next(
            (s for s in generate_slots(ctx, day, day, now)
             if s.start == req.start and s.end == req.end
             and (req.location_id is None or s.location_id == req.location_id)),
            None,
        )
        if slot is None:
            await self.s.rollback()
            logger.info("Hold refused for doctor %s at %s: not an open slot", doctor_id, req.start.isoformat())
            raise Conflict(SLOT_UNAVAILABLE)

        taken = await self.appts.occupied_seats(doctor_id, req.start, req.end, now)
        try:
            appt = await self.appts.insert_hold(
                doctor_id=doctor_id,
                start_time=req.start,
                end_time=req.end,
                mode=req.mode if req.mode and req.mode != "both" else slot.mode,
                location_id=slot.location_id,
                appointment_type_id=req.appointment_type_id,
                seat=_lowest_free_seat(taken),
                hold_expires_at=now + timedelta(seconds=self.hold_seconds),
                hold_session_id=req.session_id,
                source="hold",
            )
            await self.outbox.enqueue(
                "HOLD_CREATED", "appointment", appt.id,
                {"start": req.start.isoformat(), "end": req.end.isoformat(), "slot_id": slot.id},
                doctor_id=doctor_id,
            )
            await self.s.commit()
        except IntegrityError:
            await self.s.rollback()
            logger.info("Hold lost race for doctor %s at %s", doctor_id, req.start.isoformat())
            raise Conflict(SLOT_UNAVAILABLE)
        return appt

    async def release(self, hold_id: uuid.UUID) -> bool:
        appt = await self.appts.get(hold_id)
        if appt is None:
            return False
        released = await self.appts.release_hold(hold_id, reason="released")
        if released:
            await self.outbox.enqueue("HOLD_RELEASED", "appointment", hold_id, {"reason": "released"}, doctor_id=appt.doctor_id)
        await self.s.commit()
        return released

    async def book(self, hold_id: uuid.UUID, req: BookRequest) -> Appointment:
        appt = await self.appts.get(hold_id)
        if appt is None:
            raise HoldNotFound("Hold not found")
        if req.appointment_type_id and not await self.types.get(req.appointment_type_id):
            raise NotFound("Appointment type not found")

        now = self.clock.now()
        fields = {"patient_id": req.patient_id, "patient_name": req.patient_name, "notes": req.notes, "source": req.source or "web"}
        if req.appointment_type_id:
            fields["appointment_type_id"] = req.appointment_type_id
        expected = req.version if req.version is not None else appt.version
        ok = await self.appts.finalize_booking(hold_id, expected_version=expected, now=now, **fields)
        if not ok:
            await self.s.rollback()
            current = await self.appts.get(hold_id)
            expired = current is not None and (
                (current.status == "held" and current.hold_expires_at is not None and current.hold_expires_at <= now)
                or (current.status == "cancelled" and current.release_reason == "expired")
            )
            logger.info("Booking rejected for hold %s (%s)", hold_id, "expired" if expired else "taken")
            if expired:
                raise Expired("Your hold has expired. Please select a new time slot.")
            raise SlotTaken(SLOT_UNAVAILABLE)

        await self.outbox.enqueue(
            "APPOINTMENT_BOOKED", "appointment", hold_id,
            {"start": appt.start_time.isoformat(), "end": appt.end_time.isoformat()},
            doctor_id=appt.doctor_id,
        )
        await self.s.commit()
        return await self.appts.refresh(appt)

# ---- expiry sweep ----

async def sweep_expired_holds(session_factory: async_sessionmaker, clock: Clock = system_clock) -> int:
    async with session_factory() as s:
        expired = await AppointmentRepository(s).expire_holds(clock.now())
        outbox = OutboxService(s)
        for appt_id, doctor_id in expired:
            await outbox.enqueue("HOLDS_EXPIRED", "appointment", appt_id, {"reason": "expired"}, doctor_id=doctor_id)
        await s.commit()
    count = len(expired)
    if count:
        sweeper_log.info("Expired %d hold(s)", count)
    return count

async def run_hold_sweeper(session_factory: async_sessionmaker, clock: Clock = system_clock, interval_seconds: float | None = None):
    interval = interval_seconds or settings.HOLD_SWEEP_INTERVAL_SECONDS
    sweeper_log.info("Hold sweeper started, interval=%ss", interval)
    try:
        while True:
            try:
                await sweep_expired_holds(session_factory, clock)
            except Exception:
                sweeper_log.exception("Hold sweep failed")
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        sweeper_log.info("Hold sweeper cancelled; shutting down")
        raise
