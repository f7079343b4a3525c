from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer
from hms_scheduling.core.base import Base, TimestampedMixin

# Read-only collaborators for the scheduling engine; profile CRUD lives elsewhere.
class Doctor(Base, TimestampedMixin):
    __tablename__ = "doctor"
    name: Mapped[str] = mapped_column(String(160), index=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    default_duration: Mapped[int] = mapped_column(Integer, default=15)  # minutes
    default_buffer: Mapped[int] = mapped_column(Integer, default=0)     # minutes
    min_lead_time: Mapped[int] = mapped_column(Integer, default=0)      # minutes
    max_future_days: Mapped[int] = mapped_column(Integer, default=60)
    active: Mapped[bool] = mapped_column(default=True)

class Location(Base, TimestampedMixin):
    __tablename__ = "location"
    name: Mapped[str] = mapped_column(String(160), index=True)
    mode: Mapped[str] = mapped_column(String(16), default="in_person")  # in_person | telehealth | both
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    active: Mapped[bool] = mapped_column(default=True)
