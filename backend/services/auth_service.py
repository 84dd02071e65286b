"""Role-based authorization for booking lifecycle actions."""

from __future__ import annotations

from typing import Optional

from backend.domain.models import Actor, Booking, BookingAction
from backend.utils.config import Settings, get_settings


class RoleAuthorizationService:
    """Decides whether an actor may perform a lifecycle action.

    Staff roles may start, finish and cancel any booking. Anyone may submit,
    and a requester may cancel a booking filed under their own name.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    @property
    def staff_roles(self) -> frozenset[str]:
        return frozenset(role.upper() for role in self._settings.booking_staff_roles)

    def is_staff(self, actor: Actor) -> bool:
        return actor.normalized_role in self.staff_roles

    def authorize(
        self,
        actor: Actor,
        action: BookingAction,
        booking: Optional[Booking],
    ) -> bool:
        if action is BookingAction.SUBMIT:
            return True
        if self.is_staff(actor):
            return True
        if action is BookingAction.CANCEL and booking is not None:
            owner = (booking.requester_name or "").strip().casefold()
            return bool(owner) and owner == actor.name.strip().casefold()
        return False
