from datetime import date, time
from typing import List, Optional

from pydantic import BaseModel, Field

from models import REASON_MAX_LENGTH, Booking, Role, SlotKind, Space, Weekday


class Identity(BaseModel):
    """Verified caller, as handed over by the identity provider."""

    actor_id: int
    role: Role


class BookingCreate(BaseModel):
    space_id: int
    time_slot_id: int
    booking_date: date
    reason: str = Field(min_length=1, max_length=REASON_MAX_LENGTH)
    attendees: int = Field(gt=0)


class BookingFilter(BaseModel):
    space_id: Optional[int] = None
    time_slot_id: Optional[int] = None
    booking_date: Optional[date] = None
    actor_id: Optional[int] = None


class SpaceCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    capacity: int = Field(gt=0)
    equipped: bool = False
    equipment_count: Optional[int] = Field(default=None, ge=0)


class SpaceBookings(BaseModel):
    space: Space
    bookings: List[Booking]


class TimeSlotCreate(BaseModel):
    day: Weekday
    session: int = Field(gt=0)
    start_time: time
    end_time: time
    kind: SlotKind


class ActorCreate(BaseModel):
    name: str = Field(min_length=3, max_length=100)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    role: Role = Role.STANDARD
    enabled: bool = True


class ActorUpdate(BaseModel):
    name: str = Field(min_length=3, max_length=100)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    role: Role
