import uuid
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

AppointmentStatus = Literal["held", "booked", "checked_in", "completed", "cancelled", "no_show"]

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

class AppointmentStatusChange(CamelModel):
    status: AppointmentStatus
    version: int

class AppointmentOut(CamelModel):
    id: uuid.UUID
    doctor_id: uuid.UUID
    patient_id: uuid.UUID | None
    patient_name: str | None
    appointment_type_id: uuid.UUID | None
    start_time: datetime
    end_time: datetime
    mode: str
    location_id: str | None
    status: str
    hold_expires_at: datetime | None
    notes: str | None
    version: int
