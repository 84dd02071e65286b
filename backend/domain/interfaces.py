"""Collaborator contracts consumed by the booking and forecast services.

The lifecycle engine only talks to these protocols, so it runs unchanged
against the SQLite repository or the in-memory stores used in tests.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Optional, Protocol, Sequence

from backend.domain.models import (
    Actor,
    Booking,
    BookingAction,
    BookingDraft,
    BookingStatus,
    Forecast,
    Resource,
)


class ResourceCatalog(Protocol):
    def get_resource(self, resource_id: int) -> Optional[Resource]:
        ...


class AdmissionTransaction(Protocol):
    """Serialized view of one resource's active bookings during admission."""

    def find_overlapping(
        self,
        resource_id: int,
        start_time: datetime,
        end_time: datetime,
        statuses: Sequence[BookingStatus],
    ) -> list[int]:
        """Return the quantities of bookings overlapping ``[start, end)``."""
        ...

    def insert_booking(self, draft: BookingDraft, created_at: datetime) -> Booking:
        ...


class BookingStore(Protocol):
    def get_booking(self, booking_id: int) -> Optional[Booking]:
        ...

    def list_bookings(
        self,
        resource_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        ...

    def admission(self, resource_id: int) -> AbstractContextManager[AdmissionTransaction]:
        ...

    def update_booking_status(
        self,
        booking_id: int,
        expected_status: BookingStatus,
        new_status: BookingStatus,
        timestamp_field: str,
        at: datetime,
    ) -> Booking:
        ...


class Authorizer(Protocol):
    def authorize(self, actor: Actor, action: BookingAction, booking: Optional[Booking]) -> bool:
        ...


class RemoteForecastSource(Protocol):
    def fetch_forecast(self, horizon_days: int) -> Forecast:
        ...
