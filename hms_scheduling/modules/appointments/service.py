import uuid
import logging
from sqlalchemy.ext.asyncio import AsyncSession
from hms_scheduling.core.errors import Conflict, InvalidRequest, NotFound
from hms_scheduling.modules.appointments.models import Appointment
from hms_scheduling.modules.appointments.repository import AppointmentRepository
from hms_scheduling.modules.events.outbox import OutboxService

logger = logging.getLogger(__name__)

# held transitions go through the hold/booking endpoints, never through change_status
VALID_NEXT = {
    "held": {"booked", "cancelled"},
    "booked": {"checked_in", "cancelled", "no_show"},
    "checked_in": {"completed"},
    "completed": set(),
    "cancelled": set(),
    "no_show": set(),
}

class AppointmentService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.appts = AppointmentRepository(session)

    async def get(self, appt_id: uuid.UUID) -> Appointment:
        obj = await self.appts.get(appt_id)
        if not obj:
            raise NotFound("Appointment not found")
        return obj

    async def change_status(self, appt_id: uuid.UUID, to_status: str, expected_version: int) -> Appointment:
        obj = await self.get(appt_id)
        if obj.status == "held":
            raise InvalidRequest("Held appointments are booked or released through the hold endpoints", fields={"status": "held"})
        if to_status not in VALID_NEXT.get(obj.status, set()):
            raise InvalidRequest(f"Cannot move appointment from {obj.status} to {to_status}", fields={"status": to_status})

        ok = await self.appts.transition(appt_id, from_status=obj.status, to_status=to_status, expected_version=expected_version)
        if not ok:
            await self.session.rollback()
            raise Conflict("Appointment was modified by someone else; reload and retry")
        await OutboxService(self.session).enqueue(
            "APPOINTMENT_STATUS_CHANGED", "appointment", appt_id,
            {"from": obj.status, "to": to_status}, doctor_id=obj.doctor_id,
        )
        await self.session.commit()
        logger.info("Appointment %s moved %s -> %s", appt_id, obj.status, to_status)
        return await self.appts.refresh(obj)
