"""
Client-side hold manager.

Holds at most one slot per ``SlotHold``. The countdown only drives the UI and
the ``on_expired`` callback; the server's expiry sweep is authoritative.
"""

import uuid
import math
import asyncio
import inspect
import logging
from datetime import date, datetime
from typing import Any, Callable

from hms_scheduling.core.clock import Clock, system_clock
from hms_scheduling.client.availability_client import AvailabilityClient, BookingResult, ClientError, HoldResult
from hms_scheduling.modules.availability.schemas import TimeSlotOut

logger = logging.getLogger(__name__)

class SlotHold:
    def __init__(
        self,
        client: AvailabilityClient,
        *,
        session_id: str | None = None,
        on_expired: Callable[[], Any] | None = None,
        clock: Clock = system_clock,
        tick_seconds: float = 1.0,
    ):
        self.client = client
        self.session_id = session_id or uuid.uuid4().hex
        self.on_expired = on_expired
        self.clock = clock
        self.tick_seconds = tick_seconds

        self.hold_id: uuid.UUID | None = None
        self.doctor_id: str | None = None
        self.slot: TimeSlotOut | None = None
        self.expires_at: datetime | None = None
        self.version: int | None = None
        self.context: tuple | None = None
        self._countdown: asyncio.Task | None = None

    @property
    def is_holding(self) -> bool:
        return self.hold_id is not None

    def remaining_seconds(self) -> int:
        if self.expires_at is None:
            return 0
        return max(0, math.floor((self.expires_at - self.clock.now()).total_seconds()))

    def _clear(self) -> None:
        if self._countdown is not None and self._countdown is not asyncio.current_task():
            self._countdown.cancel()
        self._countdown = None
        self.hold_id = None
        self.doctor_id = None
        self.slot = None
        self.expires_at = None
        self.version = None

    async def select_context(self, doctor_id: uuid.UUID | str, day: date, mode: str | None = None) -> None:
        """Record what the user is browsing; a held slot is released when that changes."""
        ctx = (str(doctor_id), day, mode)
        if self.context is not None and ctx != self.context and self.is_holding:
            logger.info("Context changed, releasing hold %s", self.hold_id)
            await self.release()
        self.context = ctx

    async def hold(self, doctor_id: uuid.UUID | str, slot: TimeSlotOut, *, appointment_type_id: uuid.UUID | str | None = None) -> HoldResult:
        if self.is_holding:
            await self.release()

        result = await self.client.hold(
            doctor_id, slot.start, slot.end,
            mode=slot.mode, location_id=slot.location_id,
            appointment_type_id=appointment_type_id, session_id=self.session_id,
        )
        if not result.success:
            return result

        self.hold_id = result.hold_id
        self.doctor_id = str(doctor_id)
        self.slot = slot
        self.expires_at = result.expires_at
        self.version = result.version
        self._countdown = asyncio.create_task(self._run_countdown())
        return result

    async def _run_countdown(self) -> None:
        while True:
            remaining = (self.expires_at - self.clock.now()).total_seconds() if self.expires_at else 0
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.tick_seconds, remaining))
        logger.info("Hold %s expired on the client", self.hold_id)
        self._clear()
        if self.on_expired is not None:
            outcome = self.on_expired()
            if inspect.isawaitable(outcome):
                await outcome

    async def release(self) -> bool:
        if not self.is_holding:
            return False
        hold_id = self.hold_id
        self._clear()
        try:
            return await self.client.release(hold_id)
        except ClientError as e:
            # server expiry still frees the slot
            logger.warning("Failed to release hold %s: %s", hold_id, e)
            return False

    async def confirm(
        self,
        patient_id: uuid.UUID | str,
        *,
        patient_name: str | None = None,
        appointment_type_id: uuid.UUID | str | None = None,
        notes: str | None = None,
    ) -> BookingResult:
        if not self.is_holding:
            return BookingResult(success=False, error="no_hold", message="No slot is currently held")
        result = await self.client.book(
            self.hold_id, patient_id=patient_id, patient_name=patient_name,
            appointment_type_id=appointment_type_id, notes=notes, version=self.version,
        )
        if result.success or result.error in ("hold_expired", "hold_not_found", "slot_taken"):
            self._clear()
        return result
