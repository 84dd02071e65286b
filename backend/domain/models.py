"""Domain models for resource booking and busy-day forecasting."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class ResourceKind(str, Enum):
    VEHICLE = "VEHICLE"
    FACILITY = "FACILITY"
    EQUIPMENT = "EQUIPMENT"


class BookingStatus(str, Enum):
    REQUEST = "REQUEST"
    ONGOING = "ONGOING"
    SUCCESS = "SUCCESS"
    CANCEL = "CANCEL"


class BookingAction(str, Enum):
    SUBMIT = "submit"
    START = "start"
    FINISH = "finish"
    CANCEL = "cancel"


class BusyDayLabel(str, Enum):
    BUSY = "BUSY"
    NORMAL = "NORMAL"
    QUIET = "QUIET"


@dataclass(frozen=True)
class Resource:
    resource_id: int
    kind: ResourceKind
    name: str
    quantity: int
    status: str
    subcategory: Optional[str] = None
    type: Optional[str] = None

    def is_bookable(self, allowed_statuses: tuple[str, ...]) -> bool:
        allowed = {value.lower() for value in allowed_statuses}
        return self.quantity > 0 and self.status.lower() in allowed


@dataclass(frozen=True)
class Actor:
    """Caller identity passed explicitly into every lifecycle operation."""

    name: str
    role: str

    @property
    def normalized_role(self) -> str:
        return self.role.strip().upper()


@dataclass(frozen=True)
class BookingRequest:
    kind: ResourceKind
    resource_id: int
    resource_name: str
    start_time: datetime
    end_time: datetime
    quantity: Optional[int] = None
    requester_name: Optional[str] = None
    requester_role: Optional[str] = None
    purpose: Optional[str] = None


@dataclass(frozen=True)
class BookingDraft:
    """Admission-validated booking that has not been assigned an id yet."""

    kind: ResourceKind
    resource_id: int
    resource_name: str
    start_time: datetime
    end_time: datetime
    requested_quantity: int
    requester_name: Optional[str]
    requester_role: Optional[str]
    purpose: Optional[str]


@dataclass(frozen=True)
class Booking:
    booking_id: int
    kind: ResourceKind
    resource_id: int
    resource_name: str
    start_time: datetime
    end_time: datetime
    requested_quantity: int
    status: BookingStatus
    created_at: datetime
    requester_name: Optional[str] = None
    requester_role: Optional[str] = None
    purpose: Optional[str] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None


@dataclass(frozen=True)
class ForecastPoint:
    date: date
    expected_bookings: float
    busy_probability: float
    label: BusyDayLabel

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "expectedBookings": self.expected_bookings,
            "busyProbability": self.busy_probability,
            "label": self.label.value,
        }


@dataclass(frozen=True)
class Forecast:
    points: list[ForecastPoint]
    model: str
    generated_at: datetime
    horizon_days: int
    using_fallback: bool = False
    notes: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "generated_at": self.generated_at.isoformat(),
            "horizon_days": self.horizon_days,
            "model": self.model,
            "points": [point.to_dict() for point in self.points],
            "notes": self.notes,
            "usingFallback": self.using_fallback,
        }
        if self.error:
            payload["error"] = self.error
        return payload

