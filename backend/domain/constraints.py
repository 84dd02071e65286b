"""Domain-level rules for admission, lifecycle transitions and forecast inputs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from backend.domain.exceptions import InvalidTransitionError
from backend.domain.models import BookingAction, BookingStatus


ACTIVE_STATUSES: tuple[BookingStatus, ...] = (BookingStatus.REQUEST, BookingStatus.ONGOING)


@dataclass(frozen=True)
class Transition:
    action: BookingAction
    sources: frozenset[BookingStatus]
    target: BookingStatus
    timestamp_field: str


TRANSITIONS: dict[BookingAction, Transition] = {
    BookingAction.START: Transition(
        action=BookingAction.START,
        sources=frozenset({BookingStatus.REQUEST}),
        target=BookingStatus.ONGOING,
        timestamp_field="started_at",
    ),
    BookingAction.FINISH: Transition(
        action=BookingAction.FINISH,
        sources=frozenset({BookingStatus.ONGOING}),
        target=BookingStatus.SUCCESS,
        timestamp_field="ended_at",
    ),
    BookingAction.CANCEL: Transition(
        action=BookingAction.CANCEL,
        sources=frozenset({BookingStatus.REQUEST, BookingStatus.ONGOING}),
        target=BookingStatus.CANCEL,
        timestamp_field="canceled_at",
    ),
}


def resolve_transition(action: BookingAction, current: BookingStatus) -> Transition:
    """Return the transition for ``action`` or raise if ``current`` forbids it."""
    transition = TRANSITIONS.get(action)
    if transition is None or current not in transition.sources:
        raise InvalidTransitionError(action=action, current=current)
    return transition


def intervals_overlap(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> bool:
    """Half-open ``[start, end)`` overlap; touching endpoints do not overlap."""
    return not (end_a <= start_b or start_a >= end_b)


def exceeds_capacity(
    held_quantities: Iterable[int],
    requested_quantity: int,
    total_quantity: int,
) -> bool:
    return sum(held_quantities) + requested_quantity > total_quantity


@dataclass(frozen=True)
class ForecastConfig:
    horizon_days: int
    smoothing_factor: float
    max_horizon_days: int


def validate_forecast_config(config: ForecastConfig) -> None:
    if config.max_horizon_days <= 0:
        raise ValueError("max_horizon_days must be > 0")
    if not 0 < config.horizon_days <= config.max_horizon_days:
        raise ValueError(
            f"horizon_days must be between 1 and {config.max_horizon_days}"
        )
    if not 0.0 <= config.smoothing_factor <= 1.0:
        raise ValueError("smoothing_factor must be between 0 and 1")
