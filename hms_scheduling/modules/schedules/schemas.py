import re
import uuid
from datetime import date, datetime, time
from typing import Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Mode = Literal["in_person", "telehealth", "both"]

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$|^24:00$")

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

class ScheduleBlockIn(CamelModel):
    start: str
    end: str
    mode: Mode = "in_person"
    location_id: str | None = None
    duration: int | None = Field(default=None, ge=5, le=480)
    buffer: int | None = Field(default=None, ge=0, le=240)
    capacity: int = Field(default=1, ge=1, le=50)

    @field_validator("start", "end")
    @classmethod
    def _clock(cls, v: str) -> str:
        if not _HHMM.match(v):
            raise ValueError("expected HH:MM")
        return v

    @model_validator(mode="after")
    def _ordered(self):
        if self.end <= self.start:
            raise ValueError("block end must be after start")
        return self

class DayScheduleIn(CamelModel):
    day: int = Field(ge=0, le=6)  # 0=Sunday
    blocks: list[ScheduleBlockIn] = []

class TemplateCreate(CamelModel):
    doctor_id: uuid.UUID
    name: str = Field(default="Default", max_length=120)
    effective_from: datetime | None = None
    week_pattern: list[DayScheduleIn] = []

class TemplateOut(CamelModel):
    id: uuid.UUID
    doctor_id: uuid.UUID
    name: str
    revision: int
    is_active: bool
    effective_from: datetime
    week_pattern: list[dict]
    version: int

class ExceptionCreate(CamelModel):
    doctor_id: uuid.UUID
    exception_date: date
    exception_type: Literal["add", "block"]
    start_time: time
    end_time: time
    mode: Mode | None = None
    location_id: str | None = None
    duration: int | None = Field(default=None, ge=5, le=480)
    buffer: int | None = Field(default=None, ge=0, le=240)
    capacity: int | None = Field(default=None, ge=1, le=50)
    notes: str | None = None

    @model_validator(mode="after")
    def _ordered(self):
        if self.end_time <= self.start_time:
            raise ValueError("endTime must be after startTime")
        return self

class ExceptionOut(CamelModel):
    id: uuid.UUID
    doctor_id: uuid.UUID
    exception_date: date
    exception_type: str
    start_time: time
    end_time: time
    mode: str | None = None
    location_id: str | None = None
    capacity: int | None = None

class LeaveCreate(CamelModel):
    doctor_id: uuid.UUID
    start_datetime: datetime
    end_datetime: datetime
    leave_type: Literal["full_day", "partial_day"] = "full_day"
    reason: str | None = Field(default=None, max_length=255)
    keep_existing_bookings: bool = True

    @model_validator(mode="after")
    def _window(self):
        if self.start_datetime.tzinfo is None or self.end_datetime.tzinfo is None:
            raise ValueError("startDatetime and endDatetime must carry a UTC offset")
        if self.end_datetime <= self.start_datetime:
            raise ValueError("endDatetime must be after startDatetime")
        return self

class LeaveOut(CamelModel):
    id: uuid.UUID
    doctor_id: uuid.UUID
    start_datetime: datetime
    end_datetime: datetime
    leave_type: str
    reason: str | None = None
    status: str
    version: int

class HolidayCreate(CamelModel):
    holiday_date: date
    name: str = Field(max_length=160)
    block_bookings: bool = True
    location_id: str | None = None

class HolidayOut(CamelModel):
    id: uuid.UUID
    holiday_date: date
    name: str
    block_bookings: bool
    location_id: str | None = None
