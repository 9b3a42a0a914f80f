import pytest

from conftest import NEXT_MONDAY
from errors import ConflictError, ForbiddenError, NotFoundError
from models import Role
from repositories import BookingLedger
from schemas import ActorCreate, ActorUpdate, BookingCreate


class TestRegistration:
    async def test_duplicate_email_or_name(self, actor_service, lecturer):
        with pytest.raises(ConflictError, match="email"):
            await actor_service.register_actor(ActorCreate(name="Somebody", email="ana@school.test"))
        with pytest.raises(ConflictError, match="name"):
            await actor_service.register_actor(ActorCreate(name="Ana Lopez", email="other@school.test"))


class TestProfiles:
    async def test_view_self_or_as_elevated(self, actor_service, admin, lecturer, other_lecturer):
        assert (await actor_service.get_actor(lecturer.actor_id, lecturer)).email == "ana@school.test"
        assert (await actor_service.get_actor(lecturer.actor_id, admin)).email == "ana@school.test"
        with pytest.raises(ForbiddenError):
            await actor_service.get_actor(lecturer.actor_id, other_lecturer)

    async def test_list_and_filter_by_role(self, actor_service, admin, lecturer, other_lecturer):
        everyone = await actor_service.list_actors(admin)
        standard = await actor_service.list_actors(admin, Role.STANDARD)
        assert len(everyone) == 3
        assert {a.id for a in standard} == {lecturer.actor_id, other_lecturer.actor_id}
        with pytest.raises(ForbiddenError):
            await actor_service.list_actors(lecturer)

    async def test_standard_actor_updates_own_profile(self, actor_service, lecturer):
        updated = await actor_service.update_actor(
            lecturer.actor_id, ActorUpdate(name="Ana M. Lopez", email="ana.lopez@school.test", role=Role.STANDARD),
            lecturer,
        )
        assert (updated.name, updated.email) == ("Ana M. Lopez", "ana.lopez@school.test")

    async def test_standard_actor_cannot_promote_self(self, actor_service, lecturer):
        with pytest.raises(ForbiddenError):
            await actor_service.update_actor(
                lecturer.actor_id, ActorUpdate(name="Ana Lopez", email="ana@school.test", role=Role.ELEVATED),
                lecturer,
            )
        assert (await actor_service.get_actor(lecturer.actor_id, lecturer)).role == Role.STANDARD

    async def test_standard_actor_cannot_update_others(self, actor_service, lecturer, other_lecturer):
        with pytest.raises(ForbiddenError):
            await actor_service.update_actor(
                other_lecturer.actor_id,
                ActorUpdate(name="Luis G.", email="luis@school.test", role=Role.STANDARD),
                lecturer,
            )

    async def test_elevated_actor_changes_role(self, actor_service, admin, lecturer):
        updated = await actor_service.update_actor(
            lecturer.actor_id, ActorUpdate(name="Ana Lopez", email="ana@school.test", role=Role.ELEVATED), admin
        )
        assert updated.role == Role.ELEVATED

    async def test_update_to_taken_email(self, actor_service, admin, lecturer, other_lecturer):
        with pytest.raises(ConflictError):
            await actor_service.update_actor(
                lecturer.actor_id, ActorUpdate(name="Ana Lopez", email="luis@school.test", role=Role.STANDARD), admin
            )

    async def test_update_to_taken_name(self, actor_service, admin, lecturer, other_lecturer):
        with pytest.raises(ConflictError, match="name"):
            await actor_service.update_actor(
                lecturer.actor_id, ActorUpdate(name="Luis Garcia", email="ana@school.test", role=Role.STANDARD), admin
            )


class TestEnableAndDelete:
    async def test_elevated_actor_toggles_others(self, actor_service, admin, lecturer):
        assert (await actor_service.set_actor_enabled(lecturer.actor_id, False, admin)).enabled is False
        assert (await actor_service.set_actor_enabled(lecturer.actor_id, True, admin)).enabled is True

    async def test_cannot_disable_self(self, actor_service, admin):
        with pytest.raises(ForbiddenError):
            await actor_service.set_actor_enabled(admin.actor_id, False, admin)

    async def test_standard_actor_cannot_toggle(self, actor_service, lecturer, other_lecturer):
        with pytest.raises(ForbiddenError):
            await actor_service.set_actor_enabled(other_lecturer.actor_id, False, lecturer)

    async def test_cannot_delete_self(self, actor_service, admin):
        with pytest.raises(ForbiddenError):
            await actor_service.delete_actor(admin.actor_id, admin)

    async def test_standard_actor_cannot_delete(self, actor_service, lecturer, other_lecturer):
        with pytest.raises(ForbiddenError):
            await actor_service.delete_actor(other_lecturer.actor_id, lecturer)

    async def test_delete_removes_actor_bookings(
        self, actor_service, reservation_engine, session, admin, lecturer, space, slot
    ):
        await reservation_engine.create_booking(
            BookingCreate(space_id=space.id, time_slot_id=slot.id, booking_date=NEXT_MONDAY,
                          reason="Tutoring", attendees=3),
            lecturer,
        )

        await actor_service.delete_actor(lecturer.actor_id, admin)

        assert await BookingLedger(session).list() == []
        with pytest.raises(NotFoundError):
            await actor_service.get_actor(lecturer.actor_id, admin)

    async def test_delete_unknown(self, actor_service, admin):
        with pytest.raises(NotFoundError):
            await actor_service.delete_actor(404, admin)
