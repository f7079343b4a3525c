import uuid
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hms_scheduling.core.clock import Clock, system_clock
from hms_scheduling.core.config import settings
from hms_scheduling.core.errors import InvalidRequest, NotFound, Internal
from hms_scheduling.modules.directory.models import Doctor
from hms_scheduling.modules.directory.repository import DirectoryRepository
from hms_scheduling.modules.schedules.repository import ScheduleRepository
from hms_scheduling.modules.appointments.repository import AppointmentRepository, AppointmentTypeRepository
from hms_scheduling.modules.availability.slot_generator import (
    SlotGeneratorContext, ExceptionRule, LeavePeriod, HolidayRule, BusyInterval,
    DayAvailability, AvailabilitySummary, compute_availability, first_available,
    summarize_availability, get_tz, local_at,
)

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class AvailabilityResult:
    doctor: Doctor
    days: list[DayAvailability]
    next_available: datetime | None

    def to_dict(self) -> dict:
        return {
            "doctor_id": self.doctor.id,
            "doctor_name": self.doctor.name,
            "timezone": self.doctor.timezone,
            "days": self.days,
            "next_available": self.next_available,
        }

class AvailabilityService:
    def __init__(self, s: AsyncSession, clock: Clock = system_clock):
        self.s = s
        self.clock = clock
        self.directory = DirectoryRepository(s)
        self.schedules = ScheduleRepository(s)
        self.appts = AppointmentRepository(s)
        self.types = AppointmentTypeRepository(s)

    async def get_doctor(self, doctor_id: uuid.UUID) -> Doctor:
        doctor = await self.directory.get_doctor(doctor_id)
        if not doctor or not doctor.active:
            raise NotFound("Doctor not found")
        return doctor

    async def build_context(
        self,
        doctor: Doctor,
        start_date: date,
        end_date: date,
        *,
        mode: str | None = None,
        location_id: str | None = None,
        appointment_type_id: uuid.UUID | None = None,
    ) -> SlotGeneratorContext:
        tz = get_tz(doctor.timezone)
        window_start = local_at(tz, start_date, time(0))
        window_end = local_at(tz, end_date + timedelta(days=1), time(0))

        appt_type = None
        if appointment_type_id:
            appt_type = await self.types.get(appointment_type_id)
            if not appt_type:
                raise NotFound("Appointment type not found")

        template = await self.schedules.active_template(doctor.id)
        exceptions = await self.schedules.list_exceptions(doctor.id, start_date, end_date)
        leaves = await self.schedules.list_active_leaves(doctor.id, window_start, window_end)
        holidays = await self.schedules.list_holidays(start_date, end_date)
        appts = await self.appts.list_in_range(doctor.id, window_start, window_end)
        names = await self.directory.location_names()

        return SlotGeneratorContext(
            timezone=doctor.timezone,
            default_duration=doctor.default_duration,
            default_buffer=doctor.default_buffer,
            min_lead_time=doctor.min_lead_time,
            max_future_days=doctor.max_future_days,
            week_pattern=tuple(template.week_pattern or ()) if template else (),
            exceptions=tuple(
                ExceptionRule(
                    exception_date=e.exception_date, exception_type=e.exception_type,
                    start_time=e.start_time, end_time=e.end_time, mode=e.mode,
                    location_id=e.location_id, duration=e.duration, buffer=e.buffer,
                    capacity=e.capacity,
                )
                for e in exceptions
            ),
            leaves=tuple(
                LeavePeriod(start=l.start_datetime, end=l.end_datetime, status=l.status, reason=l.reason)
                for l in leaves
            ),
            holidays=tuple(
                HolidayRule(holiday_date=h.holiday_date, block_bookings=h.block_bookings, location_id=h.location_id)
                for h in holidays
            ),
            appointments=tuple(
                BusyInterval(start=a.start_time, end=a.end_time, status=a.status, hold_expires_at=a.hold_expires_at)
                for a in appts
            ),
            appointment_type_duration=appt_type.duration if appt_type else None,
            appointment_type_buffer=appt_type.buffer if appt_type else None,
            filter_mode=mode,
            filter_location_id=location_id,
            location_names=names,
            exception_block_mode=settings.EXCEPTION_BLOCK_MODE,
        )

    async def get_availability(
        self,
        doctor_id: uuid.UUID,
        start_date: date,
        end_date: date,
        *,
        mode: str | None = None,
        location_id: str | None = None,
        appointment_type_id: uuid.UUID | None = None,
    ) -> AvailabilityResult:
        if end_date < start_date:
            raise InvalidRequest(fields={"to": "must be on or after 'from'"})
        if (end_date - start_date).days + 1 > settings.AVAILABILITY_MAX_RANGE_DAYS:
            raise InvalidRequest(fields={"to": f"range may span at most {settings.AVAILABILITY_MAX_RANGE_DAYS} days"})

        try:
            doctor = await self.get_doctor(doctor_id)
            ctx = await self.build_context(
                doctor, start_date, end_date,
                mode=mode, location_id=location_id, appointment_type_id=appointment_type_id,
            )
        except SQLAlchemyError as e:
            logger.exception("Availability query failed doctor=%s from=%s to=%s", doctor_id, start_date, end_date)
            raise Internal("Availability is temporarily unavailable") from e

        days = compute_availability(ctx, start_date, end_date, self.clock.now())
        logger.debug("Computed %d slots for doctor %s %s..%s", sum(len(d.slots) for d in days), doctor_id, start_date, end_date)
        return AvailabilityResult(doctor=doctor, days=days, next_available=first_available(days))

    async def get_summary(self, doctor_id: uuid.UUID) -> tuple[Doctor, AvailabilitySummary]:
        try:
            doctor = await self.get_doctor(doctor_id)
            now = self.clock.now()
            tz = get_tz(doctor.timezone)
            today = now.astimezone(tz).date()
            end = today + timedelta(days=settings.SUMMARY_LOOKAHEAD_DAYS - 1)
            ctx = await self.build_context(doctor, today, end)
        except SQLAlchemyError as e:
            logger.exception("Availability summary failed doctor=%s", doctor_id)
            raise Internal("Availability is temporarily unavailable") from e

        days = compute_availability(ctx, today, end, now)
        return doctor, summarize_availability(days, ctx.leaves, now, tz)
