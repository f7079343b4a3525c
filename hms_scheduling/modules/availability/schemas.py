import uuid
import datetime as dt
from typing import Literal
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

Mode = Literal["in_person", "telehealth", "both"]

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

# ---- availability ----

class TimeSlotOut(CamelModel):
    id: str
    start: dt.datetime
    end: dt.datetime
    mode: str
    location_id: str | None = None
    location_name: str | None = None
    capacity_remaining: int
    status: str = "available"

class LeaveInfoOut(CamelModel):
    reason: str | None = None
    end_date: dt.date

class DayAvailabilityOut(CamelModel):
    date: dt.date
    status: Literal["available", "unavailable", "leave"]
    slots: list[TimeSlotOut] = []
    leave_info: LeaveInfoOut | None = None
    next_available: dt.datetime | None = None

class AvailabilityOut(CamelModel):
    doctor_id: uuid.UUID
    doctor_name: str
    timezone: str
    days: list[DayAvailabilityOut]
    next_available: dt.datetime | None = None

class AvailabilitySummaryOut(CamelModel):
    doctor_id: uuid.UUID
    doctor_name: str
    status: Literal["today", "tomorrow", "this_week", "on_leave", "no_schedule"]
    next_available: dt.datetime | None = None
    leave_until: dt.date | None = None

# ---- holds & booking ----

class HoldCreate(CamelModel):
    doctor_id: uuid.UUID
    start: dt.datetime
    end: dt.datetime
    mode: Mode | None = None
    location_id: str | None = None
    appointment_type_id: uuid.UUID | None = None
    session_id: str | None = Field(default=None, max_length=64)

    @model_validator(mode="after")
    def _check_window(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("start and end must carry a UTC offset")
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

class HoldOut(CamelModel):
    success: bool = True
    hold_id: uuid.UUID
    expires_at: dt.datetime
    version: int

class HoldFailure(CamelModel):
    success: bool = False
    error: str
    message: str

class ReleaseOut(CamelModel):
    released: bool

class BookRequest(CamelModel):
    patient_id: uuid.UUID
    patient_name: str | None = Field(default=None, max_length=200)
    appointment_type_id: uuid.UUID | None = None
    notes: str | None = None
    source: str | None = Field(default=None, max_length=24)
    version: int | None = None

class BookingOut(CamelModel):
    appointment_id: uuid.UUID
    status: str
    version: int
    start: dt.datetime
    end: dt.datetime
