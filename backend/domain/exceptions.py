"""Error taxonomy shared by the booking engine and its stores."""

from __future__ import annotations

from backend.domain.models import BookingAction, BookingStatus


class BookingError(Exception):
    """Base exception for booking workflow failures."""


class BookingValidationError(BookingError):
    """Caller input is malformed; fix the request and resubmit."""


class InvalidTimeRangeError(BookingValidationError):
    """Raised when a booking does not end strictly after it starts."""


class InvalidQuantityError(BookingValidationError):
    """Raised when fewer than one unit is requested."""


class BookingDomainError(BookingError):
    """A business rule rejected an otherwise well-formed request."""


class BookingConflictError(BookingDomainError):
    """Raised when overlapping active bookings leave too little capacity."""

    def __init__(self, resource_id: int, held: int, requested: int, total: int) -> None:
        super().__init__(
            "Resource not available for the requested time/quantity "
            f"(resource_id={resource_id}, held={held}, requested={requested}, total={total})"
        )
        self.resource_id = resource_id
        self.held = held
        self.requested = requested
        self.total = total


class ResourceUnavailableError(BookingDomainError):
    """Raised when the resource is missing, mismatched or not bookable."""


class InvalidTransitionError(BookingDomainError):
    """Raised when a lifecycle action is not allowed from the current status."""

    def __init__(self, action: BookingAction, current: BookingStatus) -> None:
        super().__init__(f"Cannot {action.value} a booking in status {current.value}")
        self.action = action
        self.current = current


class BookingNotFoundError(BookingError):
    """Raised when a booking id does not exist."""


class ForbiddenActionError(BookingError):
    """Raised when the actor may not perform the requested action."""


class PersistenceError(Exception):
    """Raised when the backing store cannot complete an operation."""


class BookingRecordNotFoundError(PersistenceError):
    """Raised when a conditional update targets a missing booking id."""


class StaleStateError(PersistenceError):
    """Raised when a booking no longer has the status an update expected."""

    def __init__(self, booking_id: int, expected: BookingStatus, actual: BookingStatus) -> None:
        super().__init__(f"Booking {booking_id} is {actual.value}, expected {expected.value}")
        self.booking_id = booking_id
        self.expected = expected
        self.actual = actual
