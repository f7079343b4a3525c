import time
import uuid
import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from hms_scheduling.core.config import settings
from hms_scheduling.core.logging import setup_logging, request_id_ctx
from hms_scheduling.core.clock import Clock, system_clock
from hms_scheduling.core.db import SessionLocal, init_models
from hms_scheduling.core.errors import SchedulingError
from hms_scheduling.api.router import api_router
from hms_scheduling.modules.events.outbox import run_outbox_relay
from hms_scheduling.modules.availability.holds import run_hold_sweeper
from hms_scheduling.platform.provider_registry import registry

setup_logging()
logger = logging.getLogger(__name__)

def _field_errors(exc: RequestValidationError) -> dict[str, str]:
    fields: dict[str, str] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("query", "body", "path", "header")]
        fields[".".join(loc) or "body"] = err.get("msg", "invalid")
    return fields

def create_app(session_factory: async_sessionmaker | None = None, clock: Clock | None = None, start_background: bool = True) -> FastAPI:
    """Build the API. Tests pass their own session factory and clock; the
    background relay and hold sweeper only run when ``start_background`` is set."""
    app = FastAPI(title=settings.APP_NAME)
    app.state.session_factory = session_factory or SessionLocal
    app.state.clock = clock or system_clock

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        token = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers["x-request-id"] = rid
        return response

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000
        logger.info(
            f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {process_time:.2f}ms"
        )
        return response

    @app.exception_handler(SchedulingError)
    async def scheduling_error_handler(request: Request, exc: SchedulingError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code} for request {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_request", "message": "Invalid request", "fields": _field_errors(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": "An internal server error occurred."},
        )

    @app.on_event("startup")
    async def on_startup():
        if session_factory is None:
            await init_models()
        if start_background:
            factory = app.state.session_factory
            app.state.outbox_task = asyncio.create_task(run_outbox_relay(factory))
            app.state.sweeper_task = asyncio.create_task(run_hold_sweeper(factory, app.state.clock))

    @app.on_event("shutdown")
    async def on_shutdown():
        for name in ("outbox_task", "sweeper_task"):
            task = getattr(app.state, name, None)
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        await registry.event_bus().close()

    app.include_router(api_router, prefix=settings.API_PREFIX)
    return app

app = create_app()
