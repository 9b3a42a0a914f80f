import logging
from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config import ENFORCE_VIEW_OWNERSHIP, configure_logging
from database import get_session, init_db
from errors import ReservationError
from models import Actor, Booking, Role, Space, TimeSlot, Weekday
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
from services import ActorService, KeyedLocks, ReservationEngine, SpaceService, TimeSlotService

logger = logging.getLogger(__name__)

app = FastAPI(title="Room Reservation System")
app.state.booking_locks = KeyedLocks()

STATUS_BY_KIND = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_input": status.HTTP_400_BAD_REQUEST,
    "conflict": status.HTTP_409_CONFLICT,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "transient": status.HTTP_503_SERVICE_UNAVAILABLE,
    "internal": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@app.on_event("startup")
async def on_startup():
    configure_logging()
    await init_db()


@app.exception_handler(ReservationError)
async def reservation_error_handler(request: Request, exc: ReservationError):
    return JSONResponse(
        status_code=STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content={"error": exc.kind, "detail": exc.message},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unexpected error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal", "detail": "unexpected server error"},
    )


# --- Dependencies ---
# The upstream identity provider verifies the token and forwards the actor.

async def get_identity(
    x_actor_id: int = Header(...),
    x_actor_role: Role = Header(...),
) -> Identity:
    return Identity(actor_id=x_actor_id, role=x_actor_role)


def get_engine(request: Request, session: AsyncSession = Depends(get_session)) -> ReservationEngine:
    return ReservationEngine.from_session(
        session,
        locks=request.app.state.booking_locks,
        enforce_view_ownership=ENFORCE_VIEW_OWNERSHIP,
    )


def get_space_service(session: AsyncSession = Depends(get_session)) -> SpaceService:
    return SpaceService.from_session(session)


def get_time_slot_service(session: AsyncSession = Depends(get_session)) -> TimeSlotService:
    return TimeSlotService.from_session(session)


def get_actor_service(session: AsyncSession = Depends(get_session)) -> ActorService:
    return ActorService.from_session(session)


@app.get("/ping")
async def ping():
    return {"ok": True, "msg": "pong"}


# --- Bookings ---

@app.get("/bookings", response_model=List[Booking])
async def list_bookings(
    space_id: Optional[int] = None,
    time_slot_id: Optional[int] = None,
    booking_date: Optional[date] = None,
    identity: Identity = Depends(get_identity),
    engine: ReservationEngine = Depends(get_engine),
):
    criteria = BookingFilter(space_id=space_id, time_slot_id=time_slot_id, booking_date=booking_date)
    return await engine.list_bookings(identity, criteria)


@app.get("/bookings/mine", response_model=List[Booking])
async def list_my_bookings(
    identity: Identity = Depends(get_identity),
    engine: ReservationEngine = Depends(get_engine),
):
    return await engine.list_own_bookings(identity)


@app.get("/bookings/actor/{actor_id}", response_model=List[Booking])
async def list_actor_bookings(
    actor_id: int,
    identity: Identity = Depends(get_identity),
    engine: ReservationEngine = Depends(get_engine),
):
    return await engine.list_bookings_for_actor(actor_id, identity)


@app.get("/bookings/{booking_id}", response_model=Booking)
async def get_booking(
    booking_id: int,
    identity: Identity = Depends(get_identity),
    engine: ReservationEngine = Depends(get_engine),
):
    return await engine.get_booking(booking_id, identity)


@app.post("/bookings", response_model=Booking, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    identity: Identity = Depends(get_identity),
    engine: ReservationEngine = Depends(get_engine),
):
    return await engine.create_booking(booking_data, identity)


@app.delete("/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_booking(
    booking_id: int,
    identity: Identity = Depends(get_identity),
    engine: ReservationEngine = Depends(get_engine),
):
    await engine.delete_booking(booking_id, identity)


# --- Spaces ---

@app.get("/spaces", response_model=List[Space])
async def list_spaces(
    min_capacity: Optional[int] = None,
    equipped: bool = False,
    service: SpaceService = Depends(get_space_service),
):
    return await service.list_spaces(min_capacity=min_capacity, equipped_only=equipped)


@app.get("/spaces/{space_id}", response_model=Space)
async def get_space(space_id: int, service: SpaceService = Depends(get_space_service)):
    return await service.get_space(space_id)


@app.get("/spaces/{space_id}/bookings", response_model=SpaceBookings)
async def get_space_bookings(space_id: int, service: SpaceService = Depends(get_space_service)):
    return await service.get_space_bookings(space_id)


@app.post("/spaces", response_model=Space, status_code=status.HTTP_201_CREATED)
async def create_space(
    space_data: SpaceCreate,
    identity: Identity = Depends(get_identity),
    service: SpaceService = Depends(get_space_service),
):
    return await service.create_space(space_data, identity)


@app.put("/spaces/{space_id}", response_model=Space)
async def update_space(
    space_id: int,
    space_data: SpaceCreate,
    identity: Identity = Depends(get_identity),
    service: SpaceService = Depends(get_space_service),
):
    return await service.update_space(space_id, space_data, identity)


@app.delete("/spaces/{space_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_space(
    space_id: int,
    identity: Identity = Depends(get_identity),
    service: SpaceService = Depends(get_space_service),
):
    await service.delete_space(space_id, identity)


# --- Time slots ---

@app.get("/time-slots", response_model=List[TimeSlot])
async def list_time_slots(service: TimeSlotService = Depends(get_time_slot_service)):
    return await service.list_time_slots()


@app.get("/time-slots/day/{day}", response_model=List[TimeSlot])
async def list_time_slots_for_day(day: Weekday, service: TimeSlotService = Depends(get_time_slot_service)):
    return await service.list_time_slots(day)


@app.get("/time-slots/{slot_id}", response_model=TimeSlot)
async def get_time_slot(slot_id: int, service: TimeSlotService = Depends(get_time_slot_service)):
    return await service.get_time_slot(slot_id)


@app.post("/time-slots", response_model=TimeSlot, status_code=status.HTTP_201_CREATED)
async def create_time_slot(
    slot_data: TimeSlotCreate,
    identity: Identity = Depends(get_identity),
    service: TimeSlotService = Depends(get_time_slot_service),
):
    return await service.create_time_slot(slot_data, identity)


@app.delete("/time-slots/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_time_slot(
    slot_id: int,
    identity: Identity = Depends(get_identity),
    service: TimeSlotService = Depends(get_time_slot_service),
):
    await service.delete_time_slot(slot_id, identity)


# --- Actors ---

@app.post("/actors", response_model=Actor, status_code=status.HTTP_201_CREATED)
async def register_actor(actor_data: ActorCreate, service: ActorService = Depends(get_actor_service)):
    # Called by the identity provider when it provisions an account
    return await service.register_actor(actor_data)


@app.get("/actors", response_model=List[Actor])
async def list_actors(
    role: Optional[Role] = None,
    identity: Identity = Depends(get_identity),
    service: ActorService = Depends(get_actor_service),
):
    return await service.list_actors(identity, role)


@app.get("/actors/{actor_id}", response_model=Actor)
async def get_actor(
    actor_id: int,
    identity: Identity = Depends(get_identity),
    service: ActorService = Depends(get_actor_service),
):
    return await service.get_actor(actor_id, identity)


@app.put("/actors/{actor_id}", response_model=Actor)
async def update_actor(
    actor_id: int,
    actor_data: ActorUpdate,
    identity: Identity = Depends(get_identity),
    service: ActorService = Depends(get_actor_service),
):
    return await service.update_actor(actor_id, actor_data, identity)


@app.patch("/actors/{actor_id}/enabled", response_model=Actor)
async def set_actor_enabled(
    actor_id: int,
    enabled: bool,
    identity: Identity = Depends(get_identity),
    service: ActorService = Depends(get_actor_service),
):
    return await service.set_actor_enabled(actor_id, enabled, identity)


@app.delete("/actors/{actor_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_actor(
    actor_id: int,
    identity: Identity = Depends(get_identity),
    service: ActorService = Depends(get_actor_service),
):
    await service.delete_actor(actor_id, identity)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
