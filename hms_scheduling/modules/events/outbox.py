import uuid
import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Text, JSON, select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hms_scheduling.core.base import Base, TimestampedMixin, UTCDateTime, utcnow
from hms_scheduling.core.config import settings
from hms_scheduling.platform.provider_registry import registry

log = logging.getLogger("event.outbox")

TOPIC = "hms.scheduling"

class EventOutbox(Base, TimestampedMixin):
    __tablename__ = "event_outbox"
    event_type: Mapped[str] = mapped_column(String(64))
    subject_type: Mapped[str] = mapped_column(String(32))
    subject_id: Mapped[str] = mapped_column(String(64))
    doctor_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSON)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, index=True)

    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | processing | sent
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_message(self) -> dict:
        return {
            "event_type": self.event_type,
            "subject": {"type": self.subject_type, "id": self.subject_id},
            "doctor_id": self.doctor_id,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
            "outbox_id": str(self.id),
        }

class OutboxRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(self, *, event_type: str, subject_type: str, subject_id: str, payload: dict, doctor_id: str | None = None, occurred_at: datetime | None = None) -> EventOutbox:
        now = datetime.now(timezone.utc)
        obj = EventOutbox(
            event_type=event_type,
            subject_type=subject_type,
            subject_id=str(subject_id),
            doctor_id=doctor_id,
            payload=payload,
            occurred_at=occurred_at or now,
            status="pending",
            attempts=0,
            next_attempt_at=now,
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def claim_batch(self, limit: int = 50) -> list[EventOutbox]:
        # SELECT ... FOR UPDATE SKIP LOCKED (ignored by SQLite)
        q = (
            select(EventOutbox)
            .where(
                and_(
                    EventOutbox.deleted_at.is_(None),
                    EventOutbox.status == "pending",
                    EventOutbox.next_attempt_at <= datetime.now(timezone.utc),
                )
            )
            .order_by(EventOutbox.occurred_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        res = await self.session.execute(q)
        rows = list(res.scalars().all())
        for r in rows:
            r.status = "processing"
        await self.session.flush()
        return rows

    async def list_since(self, after: datetime, doctor_id: str | None = None, limit: int = 100, after_id: uuid.UUID | None = None) -> list[EventOutbox]:
        """Events strictly after the (occurred_at, id) cursor, oldest first."""
        if after_id is None:
            newer = EventOutbox.occurred_at > after
        else:
            newer = or_(EventOutbox.occurred_at > after, and_(EventOutbox.occurred_at == after, EventOutbox.id > after_id))
        cond = [EventOutbox.deleted_at.is_(None), newer]
        if doctor_id:
            cond.append(EventOutbox.doctor_id == doctor_id)
        q = select(EventOutbox).where(*cond).order_by(EventOutbox.occurred_at.asc(), EventOutbox.id.asc()).limit(limit)
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def mark_sent(self, obj: EventOutbox):
        obj.status = "sent"
        obj.last_error = None
        await self.session.flush()

    async def mark_failed(self, obj: EventOutbox, error: str):
        obj.status = "pending"  # retry
        obj.attempts = (obj.attempts or 0) + 1
        backoff = min(60, 2 ** min(obj.attempts, 6))
        obj.next_attempt_at = datetime.now(timezone.utc) + timedelta(seconds=backoff)
        obj.last_error = error[:2000]
        await self.session.flush()

class OutboxService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = OutboxRepository(session)

    async def enqueue(self, event_type: str, subject_type: str, subject_id: str | uuid.UUID, payload: dict, doctor_id: str | uuid.UUID | None = None) -> EventOutbox:
        return await self.repo.enqueue(
            event_type=event_type, subject_type=subject_type, subject_id=str(subject_id),
            payload=payload, doctor_id=str(doctor_id) if doctor_id else None,
        )

# ---- Background relay ----

async def relay_once(session_factory: async_sessionmaker, limit: int = 50) -> int:
    bus = registry.event_bus()
    async with session_factory() as session:
        repo = OutboxRepository(session)
        batch = await repo.claim_batch(limit=limit)
        for ev in batch:
            try:
                await bus.publish(topic=TOPIC, key=ev.doctor_id or ev.subject_id or "-", value=ev.to_message())
                await repo.mark_sent(ev)
            except Exception as ex:  # noqa
                log.exception("Publish failed")
                await repo.mark_failed(ev, error=str(ex))
        await session.commit()
        return len(batch)

async def run_outbox_relay(session_factory: async_sessionmaker, poll_interval_seconds: float | None = None):
    interval = poll_interval_seconds or settings.OUTBOX_POLL_INTERVAL_SECONDS
    log.info("Outbox relay started with bus=%s", registry.event_bus().__class__.__name__)
    try:
        while True:
            try:
                sent = await relay_once(session_factory)
            except Exception:
                log.exception("Outbox relay iteration failed")
                sent = 0
            await asyncio.sleep(interval if not sent else 0)
    except asyncio.CancelledError:
        log.info("Outbox relay cancelled; shutting down")
        raise
