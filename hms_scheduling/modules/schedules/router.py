import uuid
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from hms_scheduling.api.deps import get_session, get_clock
from hms_scheduling.core.clock import Clock
from hms_scheduling.core.security import require_scopes
from hms_scheduling.modules.schedules.schemas import (
    TemplateCreate, TemplateOut, ExceptionCreate, ExceptionOut,
    LeaveCreate, LeaveOut, HolidayCreate, HolidayOut,
)
from hms_scheduling.modules.schedules.service import ScheduleService

router = APIRouter()

def svc(s: AsyncSession = Depends(get_session), clock: Clock = Depends(get_clock)) -> ScheduleService:
    return ScheduleService(s, clock)

@router.post("/schedules/templates", response_model=TemplateOut, response_model_by_alias=True,
             dependencies=[Depends(require_scopes("schedules:write"))])
async def publish_template(payload: TemplateCreate, service: ScheduleService = Depends(svc)):
    return await service.publish_template(payload)

@router.get("/schedules/templates", response_model=list[TemplateOut], response_model_by_alias=True,
            dependencies=[Depends(require_scopes("schedules:read"))])
async def list_templates(doctor_id: uuid.UUID = Query(..., alias="doctorId"), service: ScheduleService = Depends(svc)):
    return await service.list_templates(doctor_id)

@router.post("/schedules/exceptions", response_model=ExceptionOut, response_model_by_alias=True,
             dependencies=[Depends(require_scopes("schedules:write"))])
async def create_exception(payload: ExceptionCreate, service: ScheduleService = Depends(svc)):
    return await service.create_exception(payload)

@router.post("/schedules/leaves", response_model=LeaveOut, response_model_by_alias=True,
             dependencies=[Depends(require_scopes("schedules:write"))])
async def create_leave(payload: LeaveCreate, service: ScheduleService = Depends(svc)):
    return await service.create_leave(payload)

@router.post("/schedules/leaves/{leave_id}/cancel", response_model=LeaveOut, response_model_by_alias=True,
             dependencies=[Depends(require_scopes("schedules:write"))])
async def cancel_leave(leave_id: uuid.UUID, service: ScheduleService = Depends(svc)):
    return await service.cancel_leave(leave_id)

@router.post("/schedules/holidays", response_model=HolidayOut, response_model_by_alias=True,
             dependencies=[Depends(require_scopes("schedules:write"))])
async def create_holiday(payload: HolidayCreate, service: ScheduleService = Depends(svc)):
    return await service.create_holiday(payload)
