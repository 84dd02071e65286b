"""In-process catalog and booking store with per-resource admission locks."""

from __future__ import annotations

import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from itertools import count
from typing import Iterable, Iterator, Optional, Sequence

from backend.domain.constraints import intervals_overlap
from backend.domain.exceptions import BookingRecordNotFoundError, StaleStateError
from backend.domain.models import Booking, BookingDraft, BookingStatus, Resource


class InMemoryResourceCatalog:
    def __init__(self, resources: Iterable[Resource] = ()) -> None:
        self._resources = {resource.resource_id: resource for resource in resources}

    def get_resource(self, resource_id: int) -> Optional[Resource]:
        return self._resources.get(resource_id)


class _MemoryAdmission:
    def __init__(self, store: "InMemoryBookingStore") -> None:
        self._store = store

    def find_overlapping(
        self,
        resource_id: int,
        start_time: datetime,
        end_time: datetime,
        statuses: Sequence[BookingStatus],
    ) -> list[int]:
        with self._store._rows_lock:
            rows = list(self._store._rows.values())
        return [
            booking.requested_quantity
            for booking in rows
            if booking.resource_id == resource_id
            and booking.status in statuses
            and intervals_overlap(start_time, end_time, booking.start_time, booking.end_time)
        ]

    def insert_booking(self, draft: BookingDraft, created_at: datetime) -> Booking:
        with self._store._rows_lock:
            booking = Booking(
                booking_id=next(self._store._ids),
                kind=draft.kind,
                resource_id=draft.resource_id,
                resource_name=draft.resource_name,
                start_time=draft.start_time,
                end_time=draft.end_time,
                requested_quantity=draft.requested_quantity,
                status=BookingStatus.REQUEST,
                requester_name=draft.requester_name,
                requester_role=draft.requester_role,
                purpose=draft.purpose,
                created_at=created_at,
                updated_at=created_at,
            )
            self._store._rows[booking.booking_id] = booking
            return booking


class InMemoryBookingStore:
    """Booking store where each resource has a single admission writer.

    Admission holds the resource's lock across the overlap read and the
    insert; status updates are compare-and-swap under the row lock.
    """

    def __init__(self) -> None:
        self._rows: dict[int, Booking] = {}
        self._rows_lock = threading.Lock()
        self._ids = count(1)
        self._resource_locks: defaultdict[int, threading.Lock] = defaultdict(threading.Lock)
        self._resource_locks_guard = threading.Lock()

    def _resource_lock(self, resource_id: int) -> threading.Lock:
        with self._resource_locks_guard:
            return self._resource_locks[resource_id]

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        with self._rows_lock:
            return self._rows.get(booking_id)

    def list_bookings(
        self,
        resource_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        with self._rows_lock:
            rows = list(self._rows.values())
        selected = [
            booking
            for booking in rows
            if (resource_id is None or booking.resource_id == resource_id)
            and (status is None or booking.status is status)
        ]
        return sorted(selected, key=lambda item: (item.start_time, item.booking_id), reverse=True)

    @contextmanager
    def admission(self, resource_id: int) -> Iterator[_MemoryAdmission]:
        with self._resource_lock(resource_id):
            yield _MemoryAdmission(self)

    def update_booking_status(
        self,
        booking_id: int,
        expected_status: BookingStatus,
        new_status: BookingStatus,
        timestamp_field: str,
        at: datetime,
    ) -> Booking:
        with self._rows_lock:
            current = self._rows.get(booking_id)
            if current is None:
                raise BookingRecordNotFoundError(f"Booking {booking_id} not found")
            if current.status is not expected_status:
                raise StaleStateError(
                    booking_id=booking_id,
                    expected=expected_status,
                    actual=current.status,
                )
            updated = replace(
                current,
                status=new_status,
                updated_at=at,
                **{timestamp_field: at},
            )
            self._rows[booking_id] = updated
            return updated
