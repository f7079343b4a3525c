from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from .config import settings
from .base import Base

engine = create_async_engine(settings.POSTGRES_DSN, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def init_models(bind: AsyncEngine | None = None):
    # In dev-only "create_all" mode the app owns the schema; otherwise migrations do.
    if settings.DB_MANAGE == "create_all":
        # import models so they register on Base.metadata
        import hms_scheduling.models  # noqa: F401
        async with (bind or engine).begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
