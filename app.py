"""
app.py — FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the booking and forecast services, registers routers, and runs
startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.controllers.booking_controller import router as booking_router
from backend.controllers.forecast_controller import router as forecast_router
from backend.controllers.resource_controller import router as resource_router
from backend.repository.data_repository import DataRepository
from backend.services.auth_service import RoleAuthorizationService
from backend.services.booking_service import BookingLifecycleService
from backend.services.forecast_service import DemandForecastService
from backend.services.remote_forecast_client import RemoteForecastClient
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    The SQLite repository serves as both resource catalog and booking store.
    """
    settings = settings or get_settings()

    repository = DataRepository(settings)
    auth_service = RoleAuthorizationService(settings=settings)
    booking_service = BookingLifecycleService(
        catalog=repository,
        store=repository,
        authorizer=auth_service,
        settings=settings,
    )
    remote_client = RemoteForecastClient.from_settings(settings)
    forecast_service = DemandForecastService(
        settings=settings,
        remote_source=remote_client,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, settings)
        yield
        if remote_client is not None:
            remote_client.close()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(booking_router)
    app.include_router(forecast_router)
    app.include_router(resource_router)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)

    app.state.repository = repository
    app.state.auth_service = auth_service
    app.state.booking_service = booking_service
    app.state.forecast_service = forecast_service

    return app


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed input is a 400 so it stays distinct from 422 resource unavailability."""
    logger.info("Request rejected | path=%s | errors=%s", request.url.path, len(exc.errors()))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    The schema must exist before seeding, and the catalog must exist before
    booking history can reference it.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding resource catalog (skipped if Resources table not empty)")
        repository.seed_catalog()
        logger.info("Startup: seeding booking history (skipped if Bookings table not empty)")
        repository.seed_booking_history()

    logger.info(
        "Startup complete | remote_forecast=%s",
        settings.forecast_remote_url or "disabled",
    )


# Module-level app object for uvicorn
app = create_app()
