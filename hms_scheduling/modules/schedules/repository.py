import uuid
from datetime import date, datetime
from typing import Sequence
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from hms_scheduling.modules.schedules.models import ScheduleTemplate, ScheduleException, Leave, Holiday

class ScheduleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # templates
    async def active_template(self, doctor_id: uuid.UUID) -> ScheduleTemplate | None:
        q = select(ScheduleTemplate).where(
            ScheduleTemplate.doctor_id == doctor_id,
            ScheduleTemplate.is_active.is_(True),
            ScheduleTemplate.deleted_at.is_(None),
        ).order_by(ScheduleTemplate.revision.desc()).limit(1)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_templates(self, doctor_id: uuid.UUID) -> Sequence[ScheduleTemplate]:
        q = select(ScheduleTemplate).where(
            ScheduleTemplate.doctor_id == doctor_id,
            ScheduleTemplate.deleted_at.is_(None),
        ).order_by(ScheduleTemplate.revision.desc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def publish_template(self, doctor_id: uuid.UUID, *, name: str, week_pattern: list, effective_from: datetime) -> ScheduleTemplate:
        latest = await self.session.execute(
            select(func.max(ScheduleTemplate.revision)).where(ScheduleTemplate.doctor_id == doctor_id)
        )
        revision = (latest.scalar() or 0) + 1
        await self.session.execute(
            update(ScheduleTemplate)
            .where(ScheduleTemplate.doctor_id == doctor_id, ScheduleTemplate.is_active.is_(True))
            .values(is_active=False, version=ScheduleTemplate.version + 1)
            .execution_options(synchronize_session=False)
        )
        obj = ScheduleTemplate(doctor_id=doctor_id, name=name, revision=revision, is_active=True,
                               effective_from=effective_from, week_pattern=week_pattern)
        self.session.add(obj)
        await self.session.flush()
        return obj

    # exceptions
    async def create_exception(self, **data) -> ScheduleException:
        obj = ScheduleException(**data); self.session.add(obj); await self.session.flush(); return obj

    async def list_exceptions(self, doctor_id: uuid.UUID, start: date, end: date) -> Sequence[ScheduleException]:
        q = select(ScheduleException).where(
            ScheduleException.doctor_id == doctor_id,
            ScheduleException.deleted_at.is_(None),
            ScheduleException.exception_date >= start,
            ScheduleException.exception_date <= end,
        ).order_by(ScheduleException.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    # leaves
    async def create_leave(self, **data) -> Leave:
        obj = Leave(**data); self.session.add(obj); await self.session.flush(); return obj

    async def get_leave(self, leave_id: uuid.UUID) -> Leave | None:
        res = await self.session.execute(select(Leave).where(Leave.id == leave_id, Leave.deleted_at.is_(None)))
        return res.scalar_one_or_none()

    async def list_active_leaves(self, doctor_id: uuid.UUID, start: datetime, end: datetime) -> Sequence[Leave]:
        q = select(Leave).where(
            Leave.doctor_id == doctor_id,
            Leave.deleted_at.is_(None),
            Leave.status == "active",
            Leave.start_datetime < end,
            Leave.end_datetime > start,
        ).order_by(Leave.start_datetime.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def cancel_leave(self, leave_id: uuid.UUID) -> bool:
        res = await self.session.execute(
            update(Leave)
            .where(Leave.id == leave_id, Leave.status == "active")
            .values(status="cancelled", version=Leave.version + 1)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    # holidays
    async def create_holiday(self, **data) -> Holiday:
        obj = Holiday(**data); self.session.add(obj); await self.session.flush(); return obj

    async def list_holidays(self, start: date, end: date) -> Sequence[Holiday]:
        q = select(Holiday).where(
            Holiday.deleted_at.is_(None),
            Holiday.holiday_date >= start,
            Holiday.holiday_date <= end,
        ).order_by(Holiday.holiday_date.asc())
        res = await self.session.execute(q)
        return res.scalars().all()
