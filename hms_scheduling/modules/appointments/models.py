import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Text, ForeignKey, Index, Boolean, text
from hms_scheduling.core.base import Base, TimestampedMixin, UTCDateTime

OCCUPYING = ("held", "booked", "checked_in")
_occupying_sql = text("status IN ('held', 'booked', 'checked_in')")

class AppointmentType(Base, TimestampedMixin):
    __tablename__ = "appointment_type"
    name: Mapped[str] = mapped_column(String(120))
    duration: Mapped[int] = mapped_column(Integer)  # minutes
    buffer: Mapped[int] = mapped_column(Integer, default=0)
    mode: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

class Appointment(Base, TimestampedMixin):
    __tablename__ = "appointment"
    __table_args__ = (
        # One occupant per seat of a slot; the insert that loses the race fails here.
        Index(
            "uq_appointment_doctor_start_seat",
            "doctor_id", "start_time", "seat",
            unique=True,
            postgresql_where=_occupying_sql,
            sqlite_where=_occupying_sql,
        ),
        Index("ix_appointment_doctor_window", "doctor_id", "start_time", "end_time"),
    )

    doctor_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("doctor.id"))
    # patients are owned by the records module; referenced by id only
    patient_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    patient_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    appointment_type_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("appointment_type.id"), nullable=True)

    start_time: Mapped[datetime] = mapped_column(UTCDateTime())
    end_time: Mapped[datetime] = mapped_column(UTCDateTime())
    mode: Mapped[str] = mapped_column(String(16), default="in_person")
    location_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    seat: Mapped[int] = mapped_column(Integer, default=0)

    # held, booked, checked_in, completed, cancelled, no_show
    status: Mapped[str] = mapped_column(String(16), default="held", index=True)
    hold_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)
    hold_session_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    release_reason: Mapped[str | None] = mapped_column(String(16), nullable=True)  # released | expired | superseded | leave

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str | None] = mapped_column(String(24), nullable=True)
