"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from backend.domain.models import Actor
from backend.repository.data_repository import DataRepository
from backend.services.booking_service import BookingLifecycleService
from backend.services.forecast_service import DemandForecastService


def get_booking_service(request: Request) -> BookingLifecycleService:
    service = getattr(request.app.state, "booking_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Booking service is not initialized",
        )
    return service


def get_forecast_service(request: Request) -> DemandForecastService:
    service = getattr(request.app.state, "forecast_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Forecast service is not initialized",
        )
    return service


def get_repository(request: Request) -> DataRepository:
    repository = getattr(request.app.state, "repository", None)
    if repository is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Resource catalog is not initialized",
        )
    return repository


def get_optional_actor(
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Optional[Actor]:
    if not x_actor_name and not x_actor_role:
        return None
    return Actor(name=(x_actor_name or "").strip(), role=(x_actor_role or "").strip().upper())


def require_actor(
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    actor = get_optional_actor(x_actor_name=x_actor_name, x_actor_role=x_actor_role)
    if actor is None or not actor.role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Role header is required",
        )
    return actor
