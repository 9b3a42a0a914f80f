"""Failure kinds raised by the reservation core.

Every business-rule failure maps onto exactly one of these classes; the
transport layer decides how each kind is presented. ``TransientError`` marks
a storage collaborator that could not be reached, so the caller may retry.
``InternalError`` is reserved for defects.
"""


class ReservationError(Exception):
    kind = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ReservationError):
    kind = "not_found"

    def __init__(self, entity: str, entity_id=None):
        if entity_id is None:
            message = f"{entity} not found"
        else:
            message = f"{entity} with id {entity_id} not found"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class InvalidInputError(ReservationError):
    kind = "invalid_input"


class ConflictError(ReservationError):
    kind = "conflict"


class ForbiddenError(ReservationError):
    kind = "forbidden"

    def __init__(self, message: str = "insufficient privilege"):
        super().__init__(message)


class TransientError(ReservationError):
    kind = "transient"


class InternalError(ReservationError):
    kind = "internal"
