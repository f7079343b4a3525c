import uuid
from datetime import datetime, date, time
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Date, Time, Text, JSON, ForeignKey, Boolean
from hms_scheduling.core.base import Base, TimestampedMixin, UTCDateTime

# Weekly pattern, one revision per publish. week_pattern is a list of
# {"day": 0..6 (0=Sunday), "blocks": [{"start": "HH:MM", "end": "HH:MM", ...}]}
class ScheduleTemplate(Base, TimestampedMixin):
    __tablename__ = "schedule_template"
    doctor_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("doctor.id"), index=True)
    name: Mapped[str] = mapped_column(String(120), default="Default")
    revision: Mapped[int] = mapped_column(Integer, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    effective_from: Mapped[datetime] = mapped_column(UTCDateTime())
    week_pattern: Mapped[list] = mapped_column(JSON, default=list)

class ScheduleException(Base, TimestampedMixin):
    __tablename__ = "schedule_exception"
    doctor_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("doctor.id"), index=True)
    exception_date: Mapped[date] = mapped_column(Date, index=True)
    exception_type: Mapped[str] = mapped_column(String(8))  # add | block
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    mode: Mapped[str | None] = mapped_column(String(16), nullable=True)
    location_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    buffer: Mapped[int | None] = mapped_column(Integer, nullable=True)
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

class Leave(Base, TimestampedMixin):
    __tablename__ = "leave"
    doctor_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("doctor.id"), index=True)
    start_datetime: Mapped[datetime] = mapped_column(UTCDateTime())
    end_datetime: Mapped[datetime] = mapped_column(UTCDateTime())
    leave_type: Mapped[str] = mapped_column(String(16), default="full_day")  # full_day | partial_day
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="active")  # active | cancelled
    keep_existing_bookings: Mapped[bool] = mapped_column(Boolean, default=True)

class Holiday(Base, TimestampedMixin):
    __tablename__ = "holiday"
    holiday_date: Mapped[date] = mapped_column(Date, index=True)
    name: Mapped[str] = mapped_column(String(160))
    block_bookings: Mapped[bool] = mapped_column(Boolean, default=True)
    location_id: Mapped[str | None] = mapped_column(String(64), nullable=True)  # null = all locations
