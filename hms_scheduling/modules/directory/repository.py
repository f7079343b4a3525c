import uuid
from typing import Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from hms_scheduling.modules.directory.models import Doctor, Location

def doctor_lock_query(doctor_id: uuid.UUID):
    # row lock on PostgreSQL; SQLite already serializes writers and drops the clause
    return select(Doctor.id).where(Doctor.id == doctor_id).with_for_update()

class DirectoryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_doctor(self, doctor_id: uuid.UUID) -> Doctor | None:
        q = select(Doctor).where(Doctor.id == doctor_id, Doctor.deleted_at.is_(None))
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def lock_doctor(self, doctor_id: uuid.UUID) -> None:
        """Hold the doctor row until the current transaction ends."""
        await self.session.execute(doctor_lock_query(doctor_id))

    async def list_locations(self) -> Sequence[Location]:
        res = await self.session.execute(select(Location).where(Location.deleted_at.is_(None)))
        return res.scalars().all()

    async def location_names(self) -> dict[str, str]:
        return {str(loc.id): loc.name for loc in await self.list_locations()}
