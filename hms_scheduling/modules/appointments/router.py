import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from hms_scheduling.api.deps import get_session
from hms_scheduling.core.security import require_scopes
from hms_scheduling.modules.appointments.schemas import AppointmentOut, AppointmentStatusChange
from hms_scheduling.modules.appointments.service import AppointmentService

router = APIRouter()

def svc(s: AsyncSession = Depends(get_session)) -> AppointmentService:
    return AppointmentService(s)

@router.get("/appointments/{appointment_id}", response_model=AppointmentOut, response_model_by_alias=True,
            dependencies=[Depends(require_scopes("appointments:read"))])
async def get_appointment(appointment_id: uuid.UUID, service: AppointmentService = Depends(svc)):
    return await service.get(appointment_id)

@router.post("/appointments/{appointment_id}/status", response_model=AppointmentOut, response_model_by_alias=True,
             dependencies=[Depends(require_scopes("appointments:write"))])
async def change_status(appointment_id: uuid.UUID, payload: AppointmentStatusChange, service: AppointmentService = Depends(svc)):
    return await service.change_status(appointment_id, payload.status, payload.version)
