"""
Shared fixtures: a fresh SQLite file database per test, frozen clocks and a
small cast of actors, one space and one Monday time slot.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from datetime import date, datetime, time, timezone

import pytest
from sqlalchemy.exc import OperationalError

from database import init_db, make_engine, make_session_factory
from models import Role, SlotKind, Weekday
from schemas import ActorCreate, Identity, SpaceCreate, TimeSlotCreate
from services import ActorService, KeyedLocks, ReservationEngine, SpaceService, TimeSlotService

# Wednesday morning; the following Monday is 2026-10-19
NOW = datetime(2026, 10, 14, 8, 30, tzinfo=timezone.utc)
TODAY = NOW.date()
NEXT_MONDAY = date(2026, 10, 19)


def as_identity(actor) -> Identity:
    return Identity(actor_id=actor.id, role=actor.role)


class FlakySession:
    """Delegates to a real session, except that the ``failing`` coroutines raise
    as if the database connection had gone away."""

    def __init__(self, session=None, failing=("get", "execute")):
        self._session = session
        self._failing = set(failing)

    def __getattr__(self, name):
        if name in self._failing:
            async def unreachable(*args, **kwargs):
                raise OperationalError(name, {}, ConnectionRefusedError("storage is down"))
            return unreachable
        return getattr(self._session, name)


@pytest.fixture
async def db_engine(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'reservations.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def today():
    return lambda: TODAY


@pytest.fixture
def locks():
    return KeyedLocks()


@pytest.fixture
def reservation_engine(session, clock, today, locks):
    return ReservationEngine.from_session(session, clock=clock, today=today, locks=locks)


@pytest.fixture
def space_service(session):
    return SpaceService.from_session(session)


@pytest.fixture
def slot_service(session):
    return TimeSlotService.from_session(session)


@pytest.fixture
def actor_service(session):
    return ActorService.from_session(session)


@pytest.fixture
async def admin(actor_service) -> Identity:
    actor = await actor_service.register_actor(
        ActorCreate(name="Head Office", email="office@school.test", role=Role.ELEVATED)
    )
    return as_identity(actor)


@pytest.fixture
async def lecturer(actor_service) -> Identity:
    actor = await actor_service.register_actor(
        ActorCreate(name="Ana Lopez", email="ana@school.test", role=Role.STANDARD)
    )
    return as_identity(actor)


@pytest.fixture
async def other_lecturer(actor_service) -> Identity:
    actor = await actor_service.register_actor(
        ActorCreate(name="Luis Garcia", email="luis@school.test", role=Role.STANDARD)
    )
    return as_identity(actor)


@pytest.fixture
async def space(space_service, admin):
    return await space_service.create_space(SpaceCreate(name="Room 101", capacity=30), admin)


@pytest.fixture
async def slot(slot_service, admin):
    return await slot_service.create_time_slot(
        TimeSlotCreate(
            day=Weekday.MONDAY,
            session=3,
            start_time=time(10, 30),
            end_time=time(11, 25),
            kind=SlotKind.TEACHING,
        ),
        admin,
    )
