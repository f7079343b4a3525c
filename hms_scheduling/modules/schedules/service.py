import uuid
import logging
from sqlalchemy.ext.asyncio import AsyncSession
from hms_scheduling.core.clock import Clock, system_clock
from hms_scheduling.core.errors import NotFound
from hms_scheduling.modules.appointments.repository import AppointmentRepository
from hms_scheduling.modules.directory.repository import DirectoryRepository
from hms_scheduling.modules.events.outbox import OutboxService
from hms_scheduling.modules.schedules.models import ScheduleTemplate, ScheduleException, Leave, Holiday
from hms_scheduling.modules.schedules.repository import ScheduleRepository
from hms_scheduling.modules.schedules.schemas import TemplateCreate, ExceptionCreate, LeaveCreate, HolidayCreate

logger = logging.getLogger(__name__)

class ScheduleService:
    """Admin writes for the inputs the slot generator reads.

    Every write records an outbox event in the same transaction so downstream
    availability views can refresh.
    """

    def __init__(self, session: AsyncSession, clock: Clock = system_clock):
        self.session = session
        self.clock = clock
        self.repo = ScheduleRepository(session)
        self.directory = DirectoryRepository(session)
        self.appointments = AppointmentRepository(session)
        self.outbox = OutboxService(session)

    async def _require_doctor(self, doctor_id: uuid.UUID):
        doctor = await self.directory.get_doctor(doctor_id)
        if not doctor:
            raise NotFound("Doctor not found")
        return doctor

    async def publish_template(self, payload: TemplateCreate) -> ScheduleTemplate:
        await self._require_doctor(payload.doctor_id)
        # stored in the camelCase shape the generator reads
        pattern = [d.model_dump(by_alias=True, exclude_none=True) for d in payload.week_pattern]
        obj = await self.repo.publish_template(
            payload.doctor_id,
            name=payload.name,
            week_pattern=pattern,
            effective_from=payload.effective_from or self.clock.now(),
        )
        await self.outbox.enqueue("TEMPLATE_PUBLISHED", "schedule_template", obj.id, {"revision": obj.revision}, doctor_id=payload.doctor_id)
        await self.session.commit()
        logger.info("Published template revision %d for doctor %s", obj.revision, payload.doctor_id)
        return obj

    async def list_templates(self, doctor_id: uuid.UUID) -> list[ScheduleTemplate]:
        await self._require_doctor(doctor_id)
        return list(await self.repo.list_templates(doctor_id))

    async def create_exception(self, payload: ExceptionCreate) -> ScheduleException:
        await self._require_doctor(payload.doctor_id)
        obj = await self.repo.create_exception(**payload.model_dump())
        await self.outbox.enqueue(
            "EXCEPTION_CREATED", "schedule_exception", obj.id,
            {"date": obj.exception_date.isoformat(), "type": obj.exception_type},
            doctor_id=payload.doctor_id,
        )
        await self.session.commit()
        return obj

    async def create_leave(self, payload: LeaveCreate) -> Leave:
        await self._require_doctor(payload.doctor_id)
        obj = await self.repo.create_leave(**payload.model_dump(), status="active")
        await self.outbox.enqueue(
            "LEAVE_CREATED", "leave", obj.id,
            {"start": obj.start_datetime.isoformat(), "end": obj.end_datetime.isoformat()},
            doctor_id=payload.doctor_id,
        )
        cancelled = []
        if not payload.keep_existing_bookings:
            # same row lock the hold path takes, so no hold slips into the window meanwhile
            await self.directory.lock_doctor(payload.doctor_id)
            cancelled = await self.appointments.cancel_overlapping(payload.doctor_id, obj.start_datetime, obj.end_datetime)
            for appt_id, previous in cancelled:
                await self.outbox.enqueue(
                    "APPOINTMENT_STATUS_CHANGED", "appointment", appt_id,
                    {"from": previous, "to": "cancelled", "leave_id": str(obj.id)},
                    doctor_id=payload.doctor_id,
                )
        await self.session.commit()
        logger.info("Leave %s created for doctor %s, %d appointment(s) cancelled", obj.id, payload.doctor_id, len(cancelled))
        return obj

    async def cancel_leave(self, leave_id: uuid.UUID) -> Leave:
        obj = await self.repo.get_leave(leave_id)
        if not obj:
            raise NotFound("Leave not found")
        if await self.repo.cancel_leave(leave_id):
            await self.outbox.enqueue("LEAVE_CANCELLED", "leave", leave_id, {}, doctor_id=obj.doctor_id)
        await self.session.commit()
        await self.session.refresh(obj)
        return obj

    async def create_holiday(self, payload: HolidayCreate) -> Holiday:
        obj = await self.repo.create_holiday(**payload.model_dump())
        await self.outbox.enqueue(
            "HOLIDAY_CREATED", "holiday", obj.id,
            {"date": obj.holiday_date.isoformat(), "location_id": obj.location_id},
        )
        await self.session.commit()
        return obj
