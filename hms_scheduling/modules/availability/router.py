import uuid
from datetime import date
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from hms_scheduling.api.deps import get_session, get_clock
from hms_scheduling.core.clock import Clock
from hms_scheduling.core.errors import Conflict
from hms_scheduling.core.security import require_scopes
from hms_scheduling.modules.availability.service import AvailabilityService
from hms_scheduling.modules.availability.holds import HoldService
from hms_scheduling.modules.availability.schemas import (
    Mode, AvailabilityOut, AvailabilitySummaryOut, HoldCreate, HoldOut, HoldFailure,
    ReleaseOut, BookRequest, BookingOut,
)

router = APIRouter()

def svc(s: AsyncSession = Depends(get_session), clock: Clock = Depends(get_clock)) -> AvailabilityService:
    return AvailabilityService(s, clock)

def hold_svc(s: AsyncSession = Depends(get_session), clock: Clock = Depends(get_clock)) -> HoldService:
    return HoldService(s, clock)

@router.get("/availability", response_model=AvailabilityOut, response_model_by_alias=True,
            dependencies=[Depends(require_scopes("availability:read"))])
async def get_availability(
    doctor_id: uuid.UUID = Query(..., alias="doctorId"),
    from_: date = Query(..., alias="from"),
    to: date = Query(...),
    mode: Mode | None = Query(None),
    location_id: str | None = Query(None, alias="locationId"),
    appointment_type_id: uuid.UUID | None = Query(None, alias="appointmentTypeId"),
    service: AvailabilityService = Depends(svc),
):
    result = await service.get_availability(
        doctor_id, from_, to, mode=mode, location_id=location_id, appointment_type_id=appointment_type_id,
    )
    return AvailabilityOut.model_validate(result.to_dict())

@router.get("/availability/summary", response_model=AvailabilitySummaryOut, response_model_by_alias=True,
            dependencies=[Depends(require_scopes("availability:read"))])
async def get_summary(doctor_id: uuid.UUID = Query(..., alias="doctorId"), service: AvailabilityService = Depends(svc)):
    doctor, summary = await service.get_summary(doctor_id)
    return AvailabilitySummaryOut(
        doctor_id=doctor.id, doctor_name=doctor.name, status=summary.status,
        next_available=summary.next_available, leave_until=summary.leave_until,
    )

# Hold & Book
@router.post("/availability/holds", response_model=HoldOut, response_model_by_alias=True,
             responses={409: {"model": HoldFailure}},
             dependencies=[Depends(require_scopes("availability:write"))])
async def create_hold(payload: HoldCreate, service: HoldService = Depends(hold_svc)):
    try:
        appt = await service.hold(payload)
    except Conflict as e:
        body = HoldFailure(error=e.code, message=e.message)
        return JSONResponse(status_code=409, content=body.model_dump(by_alias=True))
    return HoldOut(hold_id=appt.id, expires_at=appt.hold_expires_at, version=appt.version)

@router.delete("/availability/holds/{hold_id}", response_model=ReleaseOut,
               dependencies=[Depends(require_scopes("availability:write"))])
async def release_hold(hold_id: uuid.UUID, service: HoldService = Depends(hold_svc)):
    return ReleaseOut(released=await service.release(hold_id))

@router.post("/availability/holds/{hold_id}/book", response_model=BookingOut, response_model_by_alias=True,
             dependencies=[Depends(require_scopes("availability:write"))])
async def book_hold(hold_id: uuid.UUID, payload: BookRequest, service: HoldService = Depends(hold_svc)):
    appt = await service.book(hold_id, payload)
    return BookingOut(appointment_id=appt.id, status=appt.status, version=appt.version, start=appt.start_time, end=appt.end_time)
