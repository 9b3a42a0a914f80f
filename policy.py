"""Who may do what.

Evaluation is pure: it looks at the acting actor's role and enabled flag and,
for ownership-scoped actions, at the id of the actor who owns the target
(the booking's creator, or the profile itself).
"""

import logging
from enum import Enum
from typing import Optional

from errors import ForbiddenError, InternalError
from models import Actor, Role

logger = logging.getLogger(__name__)


class Action(str, Enum):
    LIST_ALL_BOOKINGS = "list_all_bookings"
    VIEW_BOOKING = "view_booking"
    LIST_OWN_BOOKINGS = "list_own_bookings"
    CREATE_BOOKING = "create_booking"
    DELETE_BOOKING = "delete_booking"
    LIST_ACTOR_BOOKINGS = "list_actor_bookings"
    MANAGE_SPACES = "manage_spaces"
    MANAGE_TIME_SLOTS = "manage_time_slots"
    LIST_ACTORS = "list_actors"
    VIEW_ACTOR = "view_actor"
    UPDATE_ACTOR = "update_actor"
    CHANGE_ACTOR_ROLE = "change_actor_role"
    ENABLE_ACTOR = "enable_actor"
    DISABLE_ACTOR = "disable_actor"
    DELETE_ACTOR = "delete_actor"


# Standard actors: always allowed
STANDARD_ACTIONS = frozenset({
    Action.LIST_OWN_BOOKINGS,
    Action.CREATE_BOOKING,
})

# Standard actors: allowed only on what they own
OWNER_ACTIONS = frozenset({
    Action.VIEW_BOOKING,
    Action.DELETE_BOOKING,
    Action.VIEW_ACTOR,
    Action.UPDATE_ACTOR,
})

# Elevated actors: allowed except on themselves
NOT_ON_SELF_ACTIONS = frozenset({
    Action.DISABLE_ACTOR,
    Action.DELETE_ACTOR,
})


def is_allowed(action: Action, actor: Actor, owner_id: Optional[int] = None) -> bool:
    if not actor.enabled:
        return False

    role = Role(actor.role)
    if role is Role.ELEVATED:
        if action in NOT_ON_SELF_ACTIONS:
            return owner_id != actor.id
        return True
    if role is Role.STANDARD:
        if action in STANDARD_ACTIONS:
            return True
        if action in OWNER_ACTIONS:
            return owner_id is not None and owner_id == actor.id
        return False

    raise InternalError(f"unhandled role {role!r}")


def authorize(action: Action, actor: Actor, owner_id: Optional[int] = None) -> None:
    """Raise ``ForbiddenError`` unless ``actor`` may perform ``action``."""
    if not is_allowed(action, actor, owner_id):
        logger.info("denied %s to actor %s (%s)", action.value, actor.id, actor.role)
        raise ForbiddenError()
