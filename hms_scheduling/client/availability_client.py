"""
Async HTTP client for the availability and hold endpoints.

Read calls and releases retry transient 5xx / network failures with
exponential backoff; hold and book are sent once since their outcome is
decided by the server.
"""

import uuid
import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
import httpx

from hms_scheduling.modules.availability.schemas import (
    AvailabilityOut, AvailabilitySummaryOut, HoldOut, BookingOut,
)

logger = logging.getLogger(__name__)

class ClientError(Exception):
    def __init__(self, status_code: int, code: str, message: str, body: dict | None = None):
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message
        self.body = body or {}

@dataclass(frozen=True)
class HoldResult:
    success: bool
    hold_id: uuid.UUID | None = None
    expires_at: datetime | None = None
    version: int | None = None
    error: str | None = None
    message: str | None = None

@dataclass(frozen=True)
class BookingResult:
    success: bool
    appointment_id: uuid.UUID | None = None
    status: str | None = None
    version: int | None = None
    error: str | None = None
    message: str | None = None

def _error_from(resp: httpx.Response) -> ClientError:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    return ClientError(resp.status_code, body.get("error", "http_error"), body.get("message", resp.reason_phrase), body)

class AvailabilityClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000/api/v1",
        *,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_cap: float = 8.0,
        sleep=asyncio.sleep,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._http = httpx.AsyncClient(base_url=base_url, headers=headers, transport=transport, timeout=timeout)
        self.max_retries = max_retries
        self.backoff_cap = backoff_cap
        self._sleep = sleep

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._http.aclose()

    async def _request(self, method: str, path: str, *, retry: bool = False, **kwargs) -> httpx.Response:
        attempt = 0
        while True:
            try:
                resp = await self._http.request(method, path, **kwargs)
            except httpx.RequestError as e:
                if not retry or attempt >= self.max_retries:
                    raise ClientError(0, "network_error", str(e)) from e
                logger.warning("%s %s failed (%s), retrying", method, path, e)
            else:
                if resp.status_code < 500 or not retry or attempt >= self.max_retries:
                    return resp
                logger.warning("%s %s returned %d, retrying", method, path, resp.status_code)
            await self._sleep(min(self.backoff_cap, 2 ** attempt))
            attempt += 1

    async def get_availability(
        self,
        doctor_id: uuid.UUID | str,
        start: date,
        end: date,
        *,
        mode: str | None = None,
        location_id: str | None = None,
        appointment_type_id: uuid.UUID | str | None = None,
    ) -> AvailabilityOut:
        params = {"doctorId": str(doctor_id), "from": start.isoformat(), "to": end.isoformat()}
        if mode:
            params["mode"] = mode
        if location_id:
            params["locationId"] = location_id
        if appointment_type_id:
            params["appointmentTypeId"] = str(appointment_type_id)
        resp = await self._request("GET", "/availability", params=params, retry=True)
        if resp.status_code != 200:
            raise _error_from(resp)
        return AvailabilityOut.model_validate(resp.json())

    async def get_summary(self, doctor_id: uuid.UUID | str) -> AvailabilitySummaryOut:
        resp = await self._request("GET", "/availability/summary", params={"doctorId": str(doctor_id)}, retry=True)
        if resp.status_code != 200:
            raise _error_from(resp)
        return AvailabilitySummaryOut.model_validate(resp.json())

    async def hold(
        self,
        doctor_id: uuid.UUID | str,
        start: datetime,
        end: datetime,
        *,
        mode: str | None = None,
        location_id: str | None = None,
        appointment_type_id: uuid.UUID | str | None = None,
        session_id: str | None = None,
    ) -> HoldResult:
        body = {"doctorId": str(doctor_id), "start": start.isoformat(), "end": end.isoformat()}
        for key, value in (("mode", mode), ("locationId", location_id),
                           ("appointmentTypeId", appointment_type_id), ("sessionId", session_id)):
            if value is not None:
                body[key] = str(value)
        resp = await self._request("POST", "/availability/holds", json=body)
        if resp.status_code == 409:
            err = _error_from(resp)
            return HoldResult(success=False, error=err.code, message=err.message)
        if resp.status_code != 200:
            raise _error_from(resp)
        out = HoldOut.model_validate(resp.json())
        return HoldResult(success=True, hold_id=out.hold_id, expires_at=out.expires_at, version=out.version)

    async def release(self, hold_id: uuid.UUID | str) -> bool:
        resp = await self._request("DELETE", f"/availability/holds/{hold_id}", retry=True)
        if resp.status_code != 200:
            raise _error_from(resp)
        return bool(resp.json().get("released"))

    async def book(
        self,
        hold_id: uuid.UUID | str,
        *,
        patient_id: uuid.UUID | str,
        patient_name: str | None = None,
        appointment_type_id: uuid.UUID | str | None = None,
        notes: str | None = None,
        version: int | None = None,
    ) -> BookingResult:
        body = {"patientId": str(patient_id), "patientName": patient_name, "notes": notes, "version": version}
        if appointment_type_id:
            body["appointmentTypeId"] = str(appointment_type_id)
        resp = await self._request("POST", f"/availability/holds/{hold_id}/book", json=body)
        if resp.status_code in (404, 409):
            err = _error_from(resp)
            return BookingResult(success=False, error=err.code, message=err.message)
        if resp.status_code != 200:
            raise _error_from(resp)
        out = BookingOut.model_validate(resp.json())
        return BookingResult(success=True, appointment_id=out.appointment_id, status=out.status, version=out.version)
