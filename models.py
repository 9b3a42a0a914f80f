from typing import Optional
from datetime import date, datetime, time
from enum import Enum
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint


REASON_MAX_LENGTH = 500


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"


class SlotKind(str, Enum):
    TEACHING = "teaching"
    BREAK = "break"
    LUNCH = "lunch"


class Role(str, Enum):
    ELEVATED = "elevated"
    STANDARD = "standard"


class Space(SQLModel, table=True):
    __tablename__ = "spaces"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    capacity: int
    equipped: bool = False
    # Only meaningful when equipped
    equipment_count: Optional[int] = None


class TimeSlot(SQLModel, table=True):
    __tablename__ = "time_slots"
    __table_args__ = (
        UniqueConstraint("day", "session", name="unique_slot_day_session"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    day: Weekday = Field(index=True)
    session: int  # 1, 2, ... within the day
    start_time: time
    end_time: time
    kind: SlotKind = SlotKind.TEACHING


class Actor(SQLModel, table=True):
    __tablename__ = "actors"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True)
    email: str = Field(index=True, unique=True)
    role: Role = Role.STANDARD
    enabled: bool = True


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        # Database-level protection against double booking
        UniqueConstraint("space_id", "time_slot_id", "booking_date", name="unique_booking_slot"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    booking_date: date = Field(index=True)
    reason: str = Field(max_length=REASON_MAX_LENGTH)
    attendees: int
    # Stored as UTC; sqlmodel rejects naive values
    created_at: datetime
    space_id: int = Field(foreign_key="spaces.id", index=True, ondelete="CASCADE")
    time_slot_id: int = Field(foreign_key="time_slots.id", index=True, ondelete="RESTRICT")
    actor_id: int = Field(foreign_key="actors.id", index=True, ondelete="CASCADE")
