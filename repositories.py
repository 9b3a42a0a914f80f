"""SQLModel-backed stores for spaces, time slots, actors and bookings.

All repositories built for one request share the same ``AsyncSession`` so a
multi-table change (deleting a space together with its bookings) commits as a
single transaction.
"""

import logging
from contextlib import contextmanager
from datetime import date
from typing import List, Optional

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from errors import ConflictError, TransientError
from models import Actor, Booking, Role, Space, TimeSlot, Weekday
from schemas import BookingFilter

logger = logging.getLogger(__name__)

STORAGE_ERRORS = (OperationalError, InterfaceError, ConnectionError)

WEEK_ORDER = list(Weekday)


@contextmanager
def storage_guard(operation: str):
    """Turn a lost or refused storage connection into a retryable error."""
    try:
        yield
    except STORAGE_ERRORS as exc:
        logger.error("storage %s failed: %s", operation, exc)
        raise TransientError("storage unavailable, try again later") from exc


class Repository:
    model = None

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _execute(self, statement):
        with storage_guard("query"):
            return await self.session.execute(statement)

    async def _all(self, statement) -> list:
        result = await self._execute(statement)
        return list(result.scalars().all())

    async def _first(self, statement):
        result = await self._execute(statement)
        return result.scalars().first()

    async def get(self, entity_id: int):
        with storage_guard("lookup"):
            return await self.session.get(self.model, entity_id)

    async def commit(self, conflict_message: str = "conflicting record exists") -> None:
        try:
            await self.session.commit()
        except IntegrityError as exc:
            # Unique constraint is the final word on duplicates
            await self.session.rollback()
            raise ConflictError(conflict_message) from exc
        except STORAGE_ERRORS as exc:
            await self.session.rollback()
            logger.error("storage commit failed: %s", exc)
            raise TransientError("storage unavailable, try again later") from exc

    async def save(self, instance, conflict_message: str = "conflicting record exists"):
        self.session.add(instance)
        await self.commit(conflict_message)
        with storage_guard("refresh"):
            await self.session.refresh(instance)
        return instance

    async def remove(self, instance, conflict_message: str = "conflicting record exists") -> None:
        with storage_guard("delete"):
            await self.session.delete(instance)
        await self.commit(conflict_message)


class SpaceRegistry(Repository):
    model = Space

    async def get_by_name(self, name: str) -> Optional[Space]:
        return await self._first(select(Space).where(Space.name == name))

    async def list(self, min_capacity: Optional[int] = None, equipped_only: bool = False) -> List[Space]:
        statement = select(Space)
        if min_capacity is not None:
            statement = statement.where(Space.capacity >= min_capacity)
        if equipped_only:
            statement = statement.where(Space.equipped == True)  # noqa: E712
        return await self._all(statement.order_by(Space.id))


class TimeSlotCatalog(Repository):
    model = TimeSlot

    async def get_by_day_session(self, day: Weekday, session: int) -> Optional[TimeSlot]:
        statement = select(TimeSlot).where(TimeSlot.day == day, TimeSlot.session == session)
        return await self._first(statement)

    async def list(self, day: Optional[Weekday] = None) -> List[TimeSlot]:
        statement = select(TimeSlot)
        if day is not None:
            statement = statement.where(TimeSlot.day == day)
        slots = await self._all(statement)
        return sorted(slots, key=lambda s: (WEEK_ORDER.index(Weekday(s.day)), s.session))


class ActorDirectory(Repository):
    model = Actor

    async def get_by_email(self, email: str) -> Optional[Actor]:
        return await self._first(select(Actor).where(Actor.email == email))

    async def get_by_name(self, name: str) -> Optional[Actor]:
        return await self._first(select(Actor).where(Actor.name == name))

    async def list(self, role: Optional[Role] = None) -> List[Actor]:
        statement = select(Actor)
        if role is not None:
            statement = statement.where(Actor.role == role)
        return await self._all(statement.order_by(Actor.id))


class BookingLedger(Repository):
    model = Booking

    async def find_matching(self, space_id: int, booking_date: date, time_slot_id: int) -> List[Booking]:
        statement = select(Booking).where(
            Booking.space_id == space_id,
            Booking.booking_date == booking_date,
            Booking.time_slot_id == time_slot_id,
        )
        return await self._all(statement)

    async def list(self, criteria: Optional[BookingFilter] = None) -> List[Booking]:
        statement = select(Booking)
        if criteria is not None:
            if criteria.space_id is not None:
                statement = statement.where(Booking.space_id == criteria.space_id)
            if criteria.time_slot_id is not None:
                statement = statement.where(Booking.time_slot_id == criteria.time_slot_id)
            if criteria.booking_date is not None:
                statement = statement.where(Booking.booking_date == criteria.booking_date)
            if criteria.actor_id is not None:
                statement = statement.where(Booking.actor_id == criteria.actor_id)
        return await self._all(statement.order_by(Booking.booking_date, Booking.id))

    async def list_for_actor(self, actor_id: int) -> List[Booking]:
        return await self.list(BookingFilter(actor_id=actor_id))

    async def list_for_space(self, space_id: int) -> List[Booking]:
        return await self.list(BookingFilter(space_id=space_id))

    async def list_for_slot(self, time_slot_id: int) -> List[Booking]:
        return await self.list(BookingFilter(time_slot_id=time_slot_id))

    async def count_for_slot(self, time_slot_id: int) -> int:
        statement = select(func.count(Booking.id)).where(Booking.time_slot_id == time_slot_id)
        result = await self._execute(statement)
        return result.scalar_one()

    # The two bulk deletes below only stage the change; the caller commits
    # it together with the removal of the parent row.

    async def delete_for_space(self, space_id: int) -> int:
        result = await self._execute(delete(Booking).where(Booking.space_id == space_id))
        return result.rowcount

    async def delete_for_actor(self, actor_id: int) -> int:
        result = await self._execute(delete(Booking).where(Booking.actor_id == actor_id))
        return result.rowcount
