from fastapi import APIRouter
from hms_scheduling.modules.availability.router import router as availability_router
from hms_scheduling.modules.appointments.router import router as appointments_router
from hms_scheduling.modules.schedules.router import router as schedules_router
from hms_scheduling.modules.realtime.router import router as realtime_router

api_router = APIRouter()
api_router.include_router(availability_router, tags=["availability"])
api_router.include_router(appointments_router, tags=["appointments"])
api_router.include_router(schedules_router, tags=["schedules"])
api_router.include_router(realtime_router, tags=["realtime"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
