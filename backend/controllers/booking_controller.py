"""HTTP controller layer for booking admission and lifecycle transitions."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from pydantic import BaseModel, Field, model_validator

from backend.controllers.dependencies import (
    get_booking_service,
    get_optional_actor,
    require_actor,
)
from backend.domain.exceptions import (
    BookingConflictError,
    BookingNotFoundError,
    BookingValidationError,
    ForbiddenActionError,
    InvalidTransitionError,
    PersistenceError,
    ResourceUnavailableError,
)
from backend.domain.models import (
    Actor,
    Booking,
    BookingRequest,
    BookingStatus,
    ResourceKind,
)
from backend.services.booking_service import BookingLifecycleService
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["bookings"])

# SQLite INTEGER is a signed 64-bit value.
MAX_ROW_ID = 2**63 - 1


class CreateBookingRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    kind: ResourceKind
    resource_id: int = Field(gt=0, le=MAX_ROW_ID)
    resource_name: str = Field(default="", max_length=200)
    start_time: datetime
    end_time: datetime
    quantity: Optional[int] = None
    requester_name: Optional[str] = Field(default=None, max_length=200)
    requester_role: Optional[str] = Field(default=None, max_length=50)
    purpose: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def require_timezone(self) -> "CreateBookingRequest":
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError("start_time and end_time must include a UTC offset")
        return self


class BookingResponse(BaseModel):
    id: int
    kind: ResourceKind
    resource_id: int
    resource_name: str
    start_time: datetime
    end_time: datetime
    quantity: int = Field(ge=1)
    status: BookingStatus
    requester_name: Optional[str] = None
    requester_role: Optional[str] = None
    purpose: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.booking_id,
            kind=booking.kind,
            resource_id=booking.resource_id,
            resource_name=booking.resource_name,
            start_time=booking.start_time,
            end_time=booking.end_time,
            quantity=booking.requested_quantity,
            status=booking.status,
            requester_name=booking.requester_name,
            requester_role=booking.requester_role,
            purpose=booking.purpose,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
            started_at=booking.started_at,
            ended_at=booking.ended_at,
            canceled_at=booking.canceled_at,
        )


@router.get("", response_model=list[BookingResponse])
def list_bookings(
    resource_id: Optional[int] = Query(default=None, gt=0, le=MAX_ROW_ID),
    booking_status: Optional[BookingStatus] = Query(default=None, alias="status"),
    service: BookingLifecycleService = Depends(get_booking_service),
) -> list[BookingResponse]:
    try:
        bookings = service.list_bookings(resource_id=resource_id, status=booking_status)
    except PersistenceError as exc:
        logger.exception("Booking listing failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list bookings",
        ) from exc
    return [BookingResponse.from_booking(booking) for booking in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: int = Path(gt=0, le=MAX_ROW_ID),
    service: BookingLifecycleService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        return BookingResponse.from_booking(service.get_booking(booking_id))
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: CreateBookingRequest,
    service: BookingLifecycleService = Depends(get_booking_service),
    actor: Optional[Actor] = Depends(get_optional_actor),
) -> BookingResponse:
    """Admit a booking in REQUEST state when capacity allows it."""
    request = BookingRequest(
        kind=payload.kind,
        resource_id=payload.resource_id,
        resource_name=payload.resource_name.strip(),
        start_time=payload.start_time,
        end_time=payload.end_time,
        quantity=payload.quantity,
        requester_name=payload.requester_name,
        requester_role=payload.requester_role,
        purpose=payload.purpose,
    )
    try:
        booking = service.submit_booking(request, actor=actor)
        return BookingResponse.from_booking(booking)
    except BookingValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except BookingConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "CONFLICT",
                "message": (
                    "That resource is already booked for this time window. "
                    "Please choose another time."
                ),
            },
        ) from exc
    except ResourceUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    except ForbiddenActionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except PersistenceError as exc:
        logger.exception("Booking admission failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create booking",
        ) from exc


def _run_transition(
    operation: Callable[[int, Actor], Booking],
    booking_id: int,
    actor: Actor,
    action_name: str,
) -> BookingResponse:
    try:
        return BookingResponse.from_booking(operation(booking_id, actor))
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ForbiddenActionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PersistenceError as exc:
        logger.exception("Booking %s failed | booking_id=%s", action_name, booking_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {action_name} booking",
        ) from exc


@router.post("/{booking_id}/start", response_model=BookingResponse)
def start_booking(
    booking_id: int = Path(gt=0, le=MAX_ROW_ID),
    service: BookingLifecycleService = Depends(get_booking_service),
    actor: Actor = Depends(require_actor),
) -> BookingResponse:
    return _run_transition(service.start_booking, booking_id, actor, "start")


@router.post("/{booking_id}/finish", response_model=BookingResponse)
def finish_booking(
    booking_id: int = Path(gt=0, le=MAX_ROW_ID),
    service: BookingLifecycleService = Depends(get_booking_service),
    actor: Actor = Depends(require_actor),
) -> BookingResponse:
    return _run_transition(service.finish_booking, booking_id, actor, "finish")


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: int = Path(gt=0, le=MAX_ROW_ID),
    service: BookingLifecycleService = Depends(get_booking_service),
    actor: Actor = Depends(require_actor),
) -> BookingResponse:
    return _run_transition(service.cancel_booking, booking_id, actor, "cancel")
