"""Shared test fixtures for the scheduling service tests."""

import os

# Settings are read at import time; point them at SQLite before any app import.
os.environ.setdefault("ENV", "local")
os.environ.setdefault("POSTGRES_DSN", "sqlite+aiosqlite:///./.pytest-hms.db")
os.environ.setdefault("EVENT_BUS_PROVIDER", "noop")

from datetime import datetime, timezone
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import hms_scheduling.models  # noqa: F401
from hms_scheduling.core.base import Base
from hms_scheduling.core.clock import FrozenClock
from hms_scheduling.main import create_app
from hms_scheduling.modules.directory.models import Doctor
from hms_scheduling.modules.schedules.repository import ScheduleRepository

# Monday 2025-01-06, an hour before clinic opens
NOW = datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc)

MONDAY_MORNING = [{"day": 1, "blocks": [{"start": "09:00", "end": "12:00", "duration": 30}]}]


@pytest.fixture
async def engine(tmp_path: Path):
    """File-backed SQLite engine with the full schema."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hms.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def seed_doctor(session_factory):
    """Factory creating a doctor with a published weekly template."""

    async def _seed(week_pattern=MONDAY_MORNING, **fields) -> Doctor:
        fields.setdefault("name", "Dr. Asha Rao")
        fields.setdefault("timezone", "UTC")
        async with session_factory() as s:
            doctor = Doctor(**fields)
            s.add(doctor)
            await s.flush()
            await ScheduleRepository(s).publish_template(
                doctor.id, name="Default", week_pattern=week_pattern, effective_from=NOW
            )
            await s.commit()
            return doctor

    return _seed


@pytest.fixture
async def doctor(seed_doctor) -> Doctor:
    return await seed_doctor()


@pytest.fixture
def app(session_factory, clock):
    return create_app(session_factory=session_factory, clock=clock, start_background=False)


@pytest.fixture
async def http(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
