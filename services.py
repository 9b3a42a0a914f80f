"""Reservation engine and the catalog, registry and directory services.

Services hold no state of their own between calls: everything lives in the
repositories handed to them at construction. The only shared in-process
object is ``KeyedLocks``, which the application creates once and passes to
every ``ReservationEngine`` it builds.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Callable, Dict, Hashable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from errors import ConflictError, InvalidInputError, NotFoundError
from models import Actor, Booking, Role, Space, TimeSlot, Weekday
from policy import Action, authorize
from repositories import ActorDirectory, BookingLedger, SpaceRegistry, TimeSlotCatalog
from schemas import (
    ActorCreate,
    ActorUpdate,
    BookingCreate,
    BookingFilter,
    Identity,
    SpaceBookings,
    SpaceCreate,
    TimeSlotCreate,
)

logger = logging.getLogger(__name__)

SLOT_TAKEN = "slot already booked"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class KeyedLocks:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or awaits it."""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    def __len__(self):
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class DirectoryBoundService:
    def __init__(self, directory: ActorDirectory):
        self.directory = directory

    async def _resolve_actor(self, identity: Identity) -> Actor:
        actor = await self.directory.get(identity.actor_id)
        if actor is None:
            raise NotFoundError("actor", identity.actor_id)
        return actor


class ReservationEngine(DirectoryBoundService):
    """Creates and removes bookings.

    ``create_booking`` runs its checks in a fixed order and stops at the first
    failure: references, actor and policy, past date, double booking,
    capacity. The double-booking check and the insert happen under a lock
    keyed on (space, slot, date); the unique constraint on the ledger catches
    anything that slips past it from another process.

    ``clock`` stamps ``created_at`` and must return an aware datetime;
    ``today`` gives the server's local date used for the past-date check.
    """

    def __init__(
        self,
        ledger: BookingLedger,
        catalog: TimeSlotCatalog,
        registry: SpaceRegistry,
        directory: ActorDirectory,
        clock: Callable[[], datetime] = utc_now,
        today: Callable[[], date] = date.today,
        locks: Optional[KeyedLocks] = None,
        enforce_view_ownership: bool = False,
    ):
        super().__init__(directory)
        self.ledger = ledger
        self.catalog = catalog
        self.registry = registry
        self.clock = clock
        self.today = today
        self.locks = locks if locks is not None else KeyedLocks()
        self.enforce_view_ownership = enforce_view_ownership

    @classmethod
    def from_session(cls, session: AsyncSession, **kwargs) -> "ReservationEngine":
        return cls(
            BookingLedger(session),
            TimeSlotCatalog(session),
            SpaceRegistry(session),
            ActorDirectory(session),
            **kwargs,
        )

    async def create_booking(self, request: BookingCreate, identity: Identity) -> Booking:
        # 1. References
        space = await self.registry.get(request.space_id)
        if space is None:
            raise NotFoundError("space", request.space_id)
        slot = await self.catalog.get(request.time_slot_id)
        if slot is None:
            raise NotFoundError("slot", request.time_slot_id)

        # 2. Actor and policy
        actor = await self._resolve_actor(identity)
        authorize(Action.CREATE_BOOKING, actor)

        # 3. Temporal
        today = self.today()
        if request.booking_date < today:
            raise InvalidInputError(
                f"past date: cannot book {request.booking_date}, today is {today}"
            )

        key = (space.id, slot.id, request.booking_date)
        async with self.locks.hold(key):
            # 4. Uniqueness
            existing = await self.ledger.find_matching(space.id, request.booking_date, slot.id)
            if existing:
                logger.warning(
                    "rejected booking by actor %s: space %s slot %s on %s already taken",
                    actor.id, space.id, slot.id, request.booking_date,
                )
                raise ConflictError(
                    f"{SLOT_TAKEN}: space '{space.name}' on {request.booking_date}, "
                    f"{slot.day.value} session {slot.session}"
                )

            # 5. Capacity
            if request.attendees > space.capacity:
                raise InvalidInputError(
                    f"capacity exceeded: {request.attendees} attendees, "
                    f"space '{space.name}' holds {space.capacity}"
                )

            # 6. Commit
            booking = Booking(
                booking_date=request.booking_date,
                reason=request.reason,
                attendees=request.attendees,
                created_at=self.clock(),
                space_id=space.id,
                time_slot_id=slot.id,
                actor_id=actor.id,
            )
            await self.ledger.save(booking, conflict_message=SLOT_TAKEN)

        logger.info(
            "booking %s created: space %s slot %s on %s by actor %s",
            booking.id, space.id, slot.id, booking.booking_date, actor.id,
        )
        return booking

    async def delete_booking(self, booking_id: int, identity: Identity) -> None:
        booking = await self.ledger.get(booking_id)
        if booking is None:
            raise NotFoundError("booking", booking_id)
        actor = await self._resolve_actor(identity)
        authorize(Action.DELETE_BOOKING, actor, owner_id=booking.actor_id)

        await self.ledger.remove(booking)
        logger.info("booking %s deleted by actor %s", booking_id, actor.id)

    async def get_booking(self, booking_id: int, identity: Optional[Identity] = None) -> Booking:
        booking = await self.ledger.get(booking_id)
        if booking is None:
            raise NotFoundError("booking", booking_id)
        if self.enforce_view_ownership and identity is not None:
            actor = await self._resolve_actor(identity)
            authorize(Action.VIEW_BOOKING, actor, owner_id=booking.actor_id)
        return booking

    async def list_bookings(self, identity: Identity, criteria: Optional[BookingFilter] = None) -> List[Booking]:
        actor = await self._resolve_actor(identity)
        authorize(Action.LIST_ALL_BOOKINGS, actor)
        return await self.ledger.list(criteria)

    async def list_own_bookings(self, identity: Identity) -> List[Booking]:
        actor = await self._resolve_actor(identity)
        authorize(Action.LIST_OWN_BOOKINGS, actor)
        return await self.ledger.list_for_actor(actor.id)

    async def list_bookings_for_actor(self, actor_id: int, identity: Identity) -> List[Booking]:
        actor = await self._resolve_actor(identity)
        authorize(Action.LIST_ACTOR_BOOKINGS, actor)
        return await self.ledger.list_for_actor(actor_id)


class SpaceService(DirectoryBoundService):
    def __init__(self, registry: SpaceRegistry, ledger: BookingLedger, directory: ActorDirectory):
        super().__init__(directory)
        self.registry = registry
        self.ledger = ledger

    @classmethod
    def from_session(cls, session: AsyncSession) -> "SpaceService":
        return cls(SpaceRegistry(session), BookingLedger(session), ActorDirectory(session))

    async def list_spaces(self, min_capacity: Optional[int] = None, equipped_only: bool = False) -> List[Space]:
        return await self.registry.list(min_capacity=min_capacity, equipped_only=equipped_only)

    async def get_space(self, space_id: int) -> Space:
        space = await self.registry.get(space_id)
        if space is None:
            raise NotFoundError("space", space_id)
        return space

    async def get_space_bookings(self, space_id: int) -> SpaceBookings:
        space = await self.get_space(space_id)
        bookings = await self.ledger.list_for_space(space_id)
        return SpaceBookings(space=space, bookings=bookings)

    async def create_space(self, request: SpaceCreate, identity: Identity) -> Space:
        actor = await self._resolve_actor(identity)
        authorize(Action.MANAGE_SPACES, actor)
        check_equipment(request)
        await self._check_name_free(request.name)

        space = Space(
            name=request.name,
            capacity=request.capacity,
            equipped=request.equipped,
            equipment_count=request.equipment_count if request.equipped else None,
        )
        await self.registry.save(space, conflict_message=f"space name '{request.name}' already in use")
        logger.info("space %s (%s) created by actor %s", space.id, space.name, actor.id)
        return space

    async def update_space(self, space_id: int, request: SpaceCreate, identity: Identity) -> Space:
        actor = await self._resolve_actor(identity)
        authorize(Action.MANAGE_SPACES, actor)
        space = await self.get_space(space_id)
        check_equipment(request)
        if request.name != space.name:
            await self._check_name_free(request.name)

        space.name = request.name
        space.capacity = request.capacity
        space.equipped = request.equipped
        space.equipment_count = request.equipment_count if request.equipped else None
        await self.registry.save(space, conflict_message=f"space name '{request.name}' already in use")
        return space

    async def delete_space(self, space_id: int, identity: Identity) -> Space:
        """Delete a space and, irreversibly, every booking made for it."""
        actor = await self._resolve_actor(identity)
        authorize(Action.MANAGE_SPACES, actor)
        space = await self.get_space(space_id)

        removed = await self.ledger.delete_for_space(space_id)
        await self.registry.remove(space)
        logger.warning(
            "space %s (%s) deleted by actor %s along with %d bookings",
            space_id, space.name, actor.id, removed,
        )
        return space

    async def _check_name_free(self, name: str) -> None:
        if await self.registry.get_by_name(name) is not None:
            raise ConflictError(f"space name '{name}' already in use")


def check_equipment(request: SpaceCreate) -> None:
    if request.equipped:
        if request.equipment_count is None or request.equipment_count < 1:
            raise InvalidInputError("an equipped space needs an equipment count of at least 1")
    elif request.equipment_count:
        raise InvalidInputError("a space without equipment cannot have an equipment count")


class TimeSlotService(DirectoryBoundService):
    def __init__(self, catalog: TimeSlotCatalog, ledger: BookingLedger, directory: ActorDirectory):
        super().__init__(directory)
        self.catalog = catalog
        self.ledger = ledger

    @classmethod
    def from_session(cls, session: AsyncSession) -> "TimeSlotService":
        return cls(TimeSlotCatalog(session), BookingLedger(session), ActorDirectory(session))

    async def list_time_slots(self, day: Optional[Weekday] = None) -> List[TimeSlot]:
        return await self.catalog.list(day)

    async def get_time_slot(self, slot_id: int) -> TimeSlot:
        slot = await self.catalog.get(slot_id)
        if slot is None:
            raise NotFoundError("slot", slot_id)
        return slot

    async def create_time_slot(self, request: TimeSlotCreate, identity: Identity) -> TimeSlot:
        actor = await self._resolve_actor(identity)
        authorize(Action.MANAGE_TIME_SLOTS, actor)
        if request.start_time >= request.end_time:
            raise InvalidInputError("start time must be before end time")

        taken = f"a time slot already exists for {request.day.value} session {request.session}"
        if await self.catalog.get_by_day_session(request.day, request.session) is not None:
            raise ConflictError(taken)

        slot = TimeSlot(
            day=request.day,
            session=request.session,
            start_time=request.start_time,
            end_time=request.end_time,
            kind=request.kind,
        )
        await self.catalog.save(slot, conflict_message=taken)
        logger.info("time slot %s (%s #%s) created", slot.id, slot.day.value, slot.session)
        return slot

    async def delete_time_slot(self, slot_id: int, identity: Identity) -> TimeSlot:
        actor = await self._resolve_actor(identity)
        authorize(Action.MANAGE_TIME_SLOTS, actor)
        slot = await self.get_time_slot(slot_id)

        in_use = await self.ledger.count_for_slot(slot_id)
        if in_use:
            raise ConflictError(f"time slot {slot_id} is referenced by {in_use} bookings and cannot be deleted")

        # A booking can still land between the count and the delete
        await self.catalog.remove(
            slot, conflict_message=f"time slot {slot_id} is referenced by bookings and cannot be deleted"
        )
        logger.info("time slot %s deleted by actor %s", slot_id, actor.id)
        return slot


class ActorService(DirectoryBoundService):
    def __init__(self, directory: ActorDirectory, ledger: BookingLedger):
        super().__init__(directory)
        self.ledger = ledger

    @classmethod
    def from_session(cls, session: AsyncSession) -> "ActorService":
        return cls(ActorDirectory(session), BookingLedger(session))

    async def register_actor(self, request: ActorCreate) -> Actor:
        await self._check_unique(request.name, request.email)
        actor = Actor(
            name=request.name,
            email=request.email,
            role=request.role,
            enabled=request.enabled,
        )
        return await self.directory.save(actor, conflict_message="actor name or email already in use")

    async def get_actor(self, actor_id: int, identity: Identity) -> Actor:
        caller = await self._resolve_actor(identity)
        authorize(Action.VIEW_ACTOR, caller, owner_id=actor_id)
        return await self._get(actor_id)

    async def list_actors(self, identity: Identity, role: Optional[Role] = None) -> List[Actor]:
        caller = await self._resolve_actor(identity)
        authorize(Action.LIST_ACTORS, caller)
        return await self.directory.list(role)

    async def update_actor(self, actor_id: int, request: ActorUpdate, identity: Identity) -> Actor:
        caller = await self._resolve_actor(identity)
        authorize(Action.UPDATE_ACTOR, caller, owner_id=actor_id)
        actor = await self._get(actor_id)
        if request.role != actor.role:
            authorize(Action.CHANGE_ACTOR_ROLE, caller, owner_id=actor_id)

        await self._check_unique(
            request.name if request.name != actor.name else None,
            request.email if request.email != actor.email else None,
        )
        actor.name = request.name
        actor.email = request.email
        actor.role = request.role
        return await self.directory.save(actor, conflict_message="actor name or email already in use")

    async def set_actor_enabled(self, actor_id: int, enabled: bool, identity: Identity) -> Actor:
        caller = await self._resolve_actor(identity)
        authorize(Action.ENABLE_ACTOR if enabled else Action.DISABLE_ACTOR, caller, owner_id=actor_id)
        actor = await self._get(actor_id)
        actor.enabled = enabled
        await self.directory.save(actor)
        logger.info("actor %s %s by actor %s", actor_id, "enabled" if enabled else "disabled", caller.id)
        return actor

    async def delete_actor(self, actor_id: int, identity: Identity) -> None:
        caller = await self._resolve_actor(identity)
        authorize(Action.DELETE_ACTOR, caller, owner_id=actor_id)
        actor = await self._get(actor_id)

        removed = await self.ledger.delete_for_actor(actor_id)
        await self.directory.remove(actor)
        logger.warning("actor %s deleted by actor %s along with %d bookings", actor_id, caller.id, removed)

    async def _get(self, actor_id: int) -> Actor:
        actor = await self.directory.get(actor_id)
        if actor is None:
            raise NotFoundError("actor", actor_id)
        return actor

    async def _check_unique(self, name: Optional[str], email: Optional[str]) -> None:
        if email is not None and await self.directory.get_by_email(email) is not None:
            raise ConflictError(f"email {email} already in use")
        if name is not None and await self.directory.get_by_name(name) is not None:
            raise ConflictError(f"name {name} already in use")
