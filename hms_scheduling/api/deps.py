from fastapi import Request
from hms_scheduling.core.clock import Clock, system_clock
from hms_scheduling.core.db import SessionLocal

async def get_session(request: Request):
    factory = getattr(request.app.state, "session_factory", None) or SessionLocal
    async with factory() as s:
        yield s

def get_clock(request: Request) -> Clock:
    return getattr(request.app.state, "clock", None) or system_clock
