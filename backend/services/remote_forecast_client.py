"""HTTP client for the remote busy-day analytics endpoint."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from backend.domain.models import BusyDayLabel, Forecast, ForecastPoint
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

BUSY_DAYS_PATH = "/api/analytics/busy-days"


class RemoteForecastError(Exception):
    """Raised when the remote source is unreachable or returns an unusable answer."""


class RemoteForecastPoint(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: date
    expected_bookings: float = Field(alias="expectedBookings", ge=0.0)
    busy_probability: float = Field(alias="busyProbability", ge=0.0, le=1.0)
    label: BusyDayLabel


class RemoteForecastPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    generated_at: datetime
    horizon_days: int = Field(gt=0)
    model: str = Field(min_length=1)
    points: list[RemoteForecastPoint]
    notes: Optional[str] = None
    using_fallback: Optional[bool] = Field(default=None, alias="usingFallback")

    def to_forecast(self) -> Forecast:
        generated_at = self.generated_at
        if generated_at.tzinfo is None:
            generated_at = generated_at.replace(tzinfo=timezone.utc)
        return Forecast(
            points=[
                ForecastPoint(
                    date=point.date,
                    expected_bookings=point.expected_bookings,
                    busy_probability=point.busy_probability,
                    label=point.label,
                )
                for point in self.points
            ],
            model=self.model,
            generated_at=generated_at,
            horizon_days=self.horizon_days,
            using_fallback=bool(self.using_fallback),
            notes=self.notes,
        )


class RemoteForecastClient:
    """Fetches forecasts from ``{base_url}/api/analytics/busy-days``."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 3.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout_seconds)
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> Optional["RemoteForecastClient"]:
        resolved = settings or get_settings()
        if not resolved.forecast_remote_url:
            return None
        return cls(
            base_url=resolved.forecast_remote_url,
            timeout_seconds=resolved.forecast_remote_timeout_seconds,
        )

    def fetch_forecast(self, horizon_days: int) -> Forecast:
        try:
            response = self._client.get(BUSY_DAYS_PATH, params={"horizon_days": horizon_days})
            response.raise_for_status()
            payload = RemoteForecastPayload.model_validate(response.json())
        except httpx.HTTPStatusError as exc:
            raise RemoteForecastError(
                f"Analytics endpoint returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteForecastError(f"Analytics endpoint unreachable: {exc}") from exc
        except ValueError as exc:
            raise RemoteForecastError(f"Malformed forecast payload: {exc}") from exc

        logger.info(
            "Remote forecast fetched | horizon_days=%s | points=%s | model=%s",
            payload.horizon_days,
            len(payload.points),
            payload.model,
        )
        return payload.to_forecast()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
