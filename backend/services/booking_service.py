"""Booking admission control and lifecycle transitions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from backend.domain.constraints import (
    ACTIVE_STATUSES,
    exceeds_capacity,
    resolve_transition,
)
from backend.domain.exceptions import (
    BookingConflictError,
    BookingNotFoundError,
    BookingRecordNotFoundError,
    ForbiddenActionError,
    InvalidQuantityError,
    InvalidTimeRangeError,
    InvalidTransitionError,
    ResourceUnavailableError,
    StaleStateError,
)
from backend.domain.interfaces import Authorizer, BookingStore, ResourceCatalog
from backend.domain.models import (
    Actor,
    Booking,
    BookingAction,
    BookingDraft,
    BookingRequest,
    BookingStatus,
    Resource,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BookingLifecycleService:
    """Admits bookings against resource capacity and drives their state machine."""

    def __init__(
        self,
        catalog: ResourceCatalog,
        store: BookingStore,
        authorizer: Authorizer,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or get_settings()
        self._catalog = catalog
        self._store = store
        self._authorizer = authorizer
        self._clock = clock

    def _validate_request(self, request: BookingRequest) -> tuple[datetime, datetime, int]:
        start_time = _as_utc(request.start_time)
        end_time = _as_utc(request.end_time)
        if end_time <= start_time:
            raise InvalidTimeRangeError("End time must be after start time")

        quantity = (
            request.quantity
            if request.quantity is not None
            else self._settings.booking_default_quantity
        )
        if quantity < 1:
            raise InvalidQuantityError("quantity must be at least 1")
        return start_time, end_time, quantity

    def _resolve_resource(self, request: BookingRequest) -> Resource:
        resource = self._catalog.get_resource(request.resource_id)
        if resource is None:
            raise ResourceUnavailableError(f"resource_id {request.resource_id} not found")
        if resource.kind is not request.kind:
            raise ResourceUnavailableError(
                f"resource_id {request.resource_id} is a {resource.kind.value}, "
                f"not a {request.kind.value}"
            )
        if not resource.is_bookable(self._settings.booking_bookable_statuses):
            raise ResourceUnavailableError(
                f"resource_id {request.resource_id} is not bookable (status={resource.status})"
            )
        return resource

    def submit_booking(self, request: BookingRequest, actor: Optional[Actor] = None) -> Booking:
        """Admit a booking in REQUEST state or reject it.

        Validation runs before the catalog lookup so malformed input never
        touches storage. The overlap sum and the insert share one admission
        transaction, which the store serializes per resource.
        """
        start_time, end_time, quantity = self._validate_request(request)
        if actor is not None and not self._authorizer.authorize(actor, BookingAction.SUBMIT, None):
            raise ForbiddenActionError(f"{actor.role} may not submit bookings")
        resource = self._resolve_resource(request)

        draft = BookingDraft(
            kind=request.kind,
            resource_id=resource.resource_id,
            resource_name=request.resource_name or resource.name,
            start_time=start_time,
            end_time=end_time,
            requested_quantity=quantity,
            requester_name=request.requester_name or (actor.name if actor else None),
            requester_role=request.requester_role or (actor.role if actor else None),
            purpose=request.purpose,
        )

        with self._store.admission(resource.resource_id) as transaction:
            held = transaction.find_overlapping(
                resource.resource_id,
                start_time,
                end_time,
                ACTIVE_STATUSES,
            )
            if exceeds_capacity(held, quantity, resource.quantity):
                logger.info(
                    (
                        "Booking rejected | resource_id=%s | start=%s | end=%s | "
                        "held=%s | requested=%s | total=%s"
                    ),
                    resource.resource_id,
                    start_time.isoformat(),
                    end_time.isoformat(),
                    sum(held),
                    quantity,
                    resource.quantity,
                )
                raise BookingConflictError(
                    resource_id=resource.resource_id,
                    held=sum(held),
                    requested=quantity,
                    total=resource.quantity,
                )
            booking = transaction.insert_booking(draft, created_at=self._clock())

        logger.info(
            (
                "Booking admitted | booking_id=%s | resource_id=%s | start=%s | end=%s | "
                "quantity=%s | held_before=%s | total=%s"
            ),
            booking.booking_id,
            booking.resource_id,
            booking.start_time.isoformat(),
            booking.end_time.isoformat(),
            booking.requested_quantity,
            sum(held),
            resource.quantity,
        )
        return booking

    def get_booking(self, booking_id: int) -> Booking:
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
        return booking

    def list_bookings(
        self,
        resource_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        return self._store.list_bookings(resource_id=resource_id, status=status)

    def _transition(self, booking_id: int, action: BookingAction, actor: Actor) -> Booking:
        booking = self.get_booking(booking_id)
        if not self._authorizer.authorize(actor, action, booking):
            logger.warning(
                "Transition forbidden | booking_id=%s | action=%s | actor=%s | role=%s",
                booking_id,
                action.value,
                actor.name,
                actor.role,
            )
            raise ForbiddenActionError(f"{actor.role or 'anonymous'} may not {action.value} bookings")

        transition = resolve_transition(action, booking.status)
        try:
            updated = self._store.update_booking_status(
                booking_id,
                expected_status=booking.status,
                new_status=transition.target,
                timestamp_field=transition.timestamp_field,
                at=self._clock(),
            )
        except BookingRecordNotFoundError as exc:
            raise BookingNotFoundError(f"Booking {booking_id} not found") from exc
        except StaleStateError as exc:
            # Another handler moved the booking between our read and the update.
            raise InvalidTransitionError(action=action, current=exc.actual) from exc

        logger.info(
            "Booking transitioned | booking_id=%s | action=%s | from=%s | to=%s | actor=%s",
            booking_id,
            action.value,
            booking.status.value,
            updated.status.value,
            actor.name,
        )
        return updated

    def start_booking(self, booking_id: int, actor: Actor) -> Booking:
        return self._transition(booking_id, BookingAction.START, actor)

    def finish_booking(self, booking_id: int, actor: Actor) -> Booking:
        return self._transition(booking_id, BookingAction.FINISH, actor)

    def cancel_booking(self, booking_id: int, actor: Actor) -> Booking:
        return self._transition(booking_id, BookingAction.CANCEL, actor)
