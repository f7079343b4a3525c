import json
import uuid
import asyncio
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from hms_scheduling.api.deps import get_session
from hms_scheduling.core.db import SessionLocal
from hms_scheduling.core.errors import InvalidRequest
from hms_scheduling.core.security import require_scopes
from hms_scheduling.modules.events.outbox import OutboxRepository

router = APIRouter()

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

def _parse_after(after: str | None) -> datetime:
    if not after:
        return datetime.now(timezone.utc)
    try:
        ts = datetime.fromisoformat(after)
    except ValueError:
        raise InvalidRequest(fields={"after": "expected an ISO-8601 timestamp"})
    if ts.tzinfo is None:
        raise InvalidRequest(fields={"after": "timestamp must carry a UTC offset"})
    return ts

@router.get("/realtime/feed", dependencies=[Depends(require_scopes("realtime:read"))])
async def realtime_feed(
    after: str | None = None,
    after_id: uuid.UUID | None = Query(None, alias="afterId"),
    doctor_id: str | None = Query(None, alias="doctorId"),
    limit: int = Query(100, ge=1, le=500),
    s: AsyncSession = Depends(get_session),
):
    """Polling variant of the event stream. Pass the last event's
    ``occurred_at`` and ``outbox_id`` back as ``after`` and ``afterId``."""
    rows = await OutboxRepository(s).list_since(_parse_after(after) if after else EPOCH, doctor_id, limit, after_id=after_id)
    return {"events": [r.to_message() for r in rows]}

@router.get("/realtime/events", dependencies=[Depends(require_scopes("realtime:read"))])
async def realtime_events(
    request: Request,
    after: str | None = None,
    doctor_id: str | None = Query(None, alias="doctorId"),
):
    last_seen = _parse_after(after)
    last_id = None
    factory = getattr(request.app.state, "session_factory", None) or SessionLocal

    async def event_stream():
        nonlocal last_seen, last_id
        while not await request.is_disconnected():
            async with factory() as s:
                rows = await OutboxRepository(s).list_since(last_seen, doctor_id, after_id=last_id)
            for r in rows:
                last_seen, last_id = r.occurred_at, r.id
                yield "event: scheduling\n"
                yield f"data: {json.dumps(r.to_message())}\n\n"
            await asyncio.sleep(1.0)

    return StreamingResponse(event_stream(), media_type="text/event-stream")
