import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, update, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from hms_scheduling.modules.appointments.models import Appointment, AppointmentType, OCCUPYING

def _occupying(now: datetime):
    # held rows past their expiry no longer occupy, even before the sweep runs
    return and_(
        Appointment.status.in_(OCCUPYING),
        or_(Appointment.status != "held", Appointment.hold_expires_at.is_(None), Appointment.hold_expires_at > now),
    )

class AppointmentRepository:
    """Appointment store. Every state change is one conditional statement."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, appt_id: uuid.UUID) -> Appointment | None:
        q = select(Appointment).where(Appointment.id == appt_id, Appointment.deleted_at.is_(None))
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def refresh(self, obj: Appointment) -> Appointment:
        await self.session.refresh(obj)
        return obj

    async def list_in_range(self, doctor_id: uuid.UUID, start: datetime, end: datetime) -> Sequence[Appointment]:
        q = select(Appointment).where(
            Appointment.doctor_id == doctor_id,
            Appointment.deleted_at.is_(None),
            Appointment.status.in_(OCCUPYING),
            Appointment.start_time < end,
            Appointment.end_time > start,
        ).order_by(Appointment.start_time.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def occupied_seats(self, doctor_id: uuid.UUID, start: datetime, end: datetime, now: datetime) -> list[int]:
        q = select(Appointment.seat).where(
            Appointment.doctor_id == doctor_id,
            Appointment.deleted_at.is_(None),
            _occupying(now),
            Appointment.start_time < end,
            Appointment.end_time > start,
        )
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def insert_hold(self, **data) -> Appointment:
        obj = Appointment(status="held", **data)
        self.session.add(obj)
        await self.session.flush()  # unique seat index raises IntegrityError for the loser
        return obj

    async def active_session_holds(self, session_id: str) -> Sequence[Appointment]:
        q = select(Appointment).where(Appointment.hold_session_id == session_id, Appointment.status == "held")
        res = await self.session.execute(q)
        return res.scalars().all()

    async def release_hold(self, appt_id: uuid.UUID, reason: str = "released") -> bool:
        res = await self.session.execute(
            update(Appointment)
            .where(Appointment.id == appt_id, Appointment.status == "held")
            .values(status="cancelled", release_reason=reason, version=Appointment.version + 1)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    async def expire_holds(self, now: datetime, doctor_id: uuid.UUID | None = None) -> list[tuple[uuid.UUID, uuid.UUID]]:
        """Cancel lapsed holds; returns (appointment_id, doctor_id) for each row changed."""
        cond = [Appointment.status == "held", Appointment.hold_expires_at <= now]
        if doctor_id is not None:
            cond.append(Appointment.doctor_id == doctor_id)
        res = await self.session.execute(
            update(Appointment)
            .where(*cond)
            .values(status="cancelled", release_reason="expired", version=Appointment.version + 1)
            .returning(Appointment.id, Appointment.doctor_id)
            .execution_options(synchronize_session=False)
        )
        return [tuple(row) for row in res.all()]

    async def cancel_overlapping(self, doctor_id: uuid.UUID, start: datetime, end: datetime) -> list[tuple[uuid.UUID, str]]:
        """Cancel every occupying appointment inside [start, end); returns (id, previous status)."""
        cond = [
            Appointment.doctor_id == doctor_id,
            Appointment.deleted_at.is_(None),
            Appointment.status.in_(OCCUPYING),
            Appointment.start_time < end,
            Appointment.end_time > start,
        ]
        res = await self.session.execute(select(Appointment.id, Appointment.status).where(*cond))
        previous = {row.id: row.status for row in res.all()}
        if not previous:
            return []
        res = await self.session.execute(
            update(Appointment)
            .where(Appointment.id.in_(list(previous)), *cond)
            .values(status="cancelled", release_reason="leave", hold_expires_at=None, version=Appointment.version + 1)
            .returning(Appointment.id)
            .execution_options(synchronize_session=False)
        )
        return [(appt_id, previous[appt_id]) for appt_id in res.scalars().all()]

    async def finalize_booking(self, appt_id: uuid.UUID, *, expected_version: int, now: datetime, **fields) -> bool:
        res = await self.session.execute(
            update(Appointment)
            .where(
                Appointment.id == appt_id,
                Appointment.status == "held",
                Appointment.version == expected_version,
                Appointment.hold_expires_at > now,
            )
            .values(status="booked", hold_expires_at=None, hold_session_id=None, version=Appointment.version + 1, **fields)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    async def transition(self, appt_id: uuid.UUID, *, from_status: str, to_status: str, expected_version: int) -> bool:
        res = await self.session.execute(
            update(Appointment)
            .where(Appointment.id == appt_id, Appointment.status == from_status, Appointment.version == expected_version)
            .values(status=to_status, version=Appointment.version + 1)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1


class AppointmentTypeRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, type_id: uuid.UUID) -> AppointmentType | None:
        q = select(AppointmentType).where(
            AppointmentType.id == type_id,
            AppointmentType.is_active.is_(True),
            AppointmentType.deleted_at.is_(None),
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()
