"""HTTP controller layer for busy-day analytics and service health."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from backend.controllers.dependencies import get_booking_service, get_forecast_service
from backend.domain.exceptions import PersistenceError
from backend.services.booking_service import BookingLifecycleService
from backend.services.forecast_service import DemandForecastService, ForecastValidationError
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["analytics"])


@router.get("/analytics/busy-days")
def busy_days(
    horizon_days: Optional[int] = Query(default=None),
    smoothing_factor: Optional[float] = Query(default=None),
    booking_service: BookingLifecycleService = Depends(get_booking_service),
    forecast_service: DemandForecastService = Depends(get_forecast_service),
) -> dict[str, Any]:
    """Forecast busy days from stored bookings, remote first when configured."""
    try:
        history = booking_service.list_bookings()
        forecast = forecast_service.forecast_busy_days(
            history,
            horizon_days=horizon_days,
            smoothing_factor=smoothing_factor,
        )
        return forecast.to_dict()
    except ForecastValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PersistenceError as exc:
        logger.exception("Booking history could not be loaded for forecasting")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load booking history",
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected forecast failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate forecast",
        ) from exc


@router.get("/health")
async def health() -> dict[str, bool]:
    return {"ok": True}
