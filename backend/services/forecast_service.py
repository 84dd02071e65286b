"""Busy-day demand forecasting from booking history.

The local model is a weekday-seasonal baseline blended with an exponential
moving average of daily booked units. It is a pure function of the booking
set, so it also serves as the offline fallback when the remote analytics
source cannot answer.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from threading import RLock
from typing import Callable, Iterable, Optional, Protocol, Sequence

import numpy as np
import pandas as pd

from backend.domain.constraints import ForecastConfig, validate_forecast_config
from backend.domain.interfaces import RemoteForecastSource
from backend.domain.models import (
    Booking,
    BookingStatus,
    BusyDayLabel,
    Forecast,
    ForecastPoint,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

BUSY_THRESHOLD = 0.6
QUIET_THRESHOLD = 0.4
WEEKDAY_WEIGHT = 0.4
LAG_WEIGHT = 0.6
LAG_DAYS = 7

LOCAL_NOTE = "Generated locally from booking history via exponential moving averages."
FALLBACK_NOTE_WITH_HISTORY = (
    "Using local moving-average forecast because the analytics endpoint is unavailable."
)
FALLBACK_NOTE_WITHOUT_HISTORY = (
    "Analytics forecast endpoint unavailable. Showing a local baseline until bookings are recorded."
)
REMOTE_UNAVAILABLE_MESSAGE = "Analytics forecast endpoint unavailable."


class ForecastValidationError(Exception):
    """Raised when forecast horizon or smoothing inputs are invalid."""


def _booked_units(booking: Booking) -> int:
    quantity = booking.requested_quantity
    return quantity if isinstance(quantity, int) and quantity > 0 else 1


def _booking_day(booking: Booking) -> date:
    start = booking.start_time
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return start.astimezone(timezone.utc).date()


def build_bookings_signature(bookings: Iterable[Booking]) -> str:
    """Content key of the history: sorted ``date:quantity`` pairs, cancellations excluded."""
    return "|".join(
        sorted(
            f"{_booking_day(booking).isoformat()}:{_booked_units(booking)}"
            for booking in bookings
            if booking.status is not BookingStatus.CANCEL
        )
    )


def build_daily_counts(bookings: Iterable[Booking], today: date) -> pd.Series:
    """Sum booked units per UTC start date, skipping cancellations and future days."""
    records = [
        {"date": _booking_day(booking), "units": _booked_units(booking)}
        for booking in bookings
        if booking.status is not BookingStatus.CANCEL and _booking_day(booking) <= today
    ]
    if not records:
        return pd.Series(dtype=float)
    frame = pd.DataFrame(records)
    return frame.groupby("date")["units"].sum().astype(float).sort_index()


def weekday_averages(daily_counts: pd.Series) -> pd.Series:
    """Mean daily units per weekday (Monday=0); NaN where a weekday has no history."""
    if daily_counts.empty:
        return pd.Series(np.nan, index=range(7), dtype=float)
    weekdays = [day.weekday() for day in daily_counts.index]
    return daily_counts.groupby(weekdays).mean().reindex(range(7))


def exponential_moving_average(daily_counts: pd.Series, alpha: float) -> pd.Series:
    """``ema[0] = v[0]``, ``ema[i] = alpha * v[i] + (1 - alpha) * ema[i - 1]``."""
    if daily_counts.empty:
        return daily_counts
    safe_alpha = max(0.0, min(1.0, alpha))
    if safe_alpha == 0.0:
        # pandas rejects alpha == 0; the recurrence then just carries v[0].
        return pd.Series(float(daily_counts.iloc[0]), index=daily_counts.index)
    return daily_counts.ewm(alpha=safe_alpha, adjust=False).mean()


def _sigmoid(value: float) -> float:
    if value >= 0:
        return 1.0 / (1.0 + math.exp(-value))
    exp_value = math.exp(value)
    return exp_value / (1.0 + exp_value)


def busy_probability(expected: float, overall_mean: float, overall_std: float) -> float:
    if overall_std == 0:
        if expected > overall_mean:
            return 0.65
        if overall_mean == 0 and expected == 0:
            return 0.2
        return 0.45
    threshold = overall_mean + 0.5 * overall_std
    return _sigmoid((expected - threshold) / overall_std)


def label_for(probability: float) -> BusyDayLabel:
    if probability >= BUSY_THRESHOLD:
        return BusyDayLabel.BUSY
    if probability <= QUIET_THRESHOLD:
        return BusyDayLabel.QUIET
    return BusyDayLabel.NORMAL


def generate_busy_day_forecast(
    bookings: Sequence[Booking],
    horizon_days: int = 14,
    smoothing_factor: float = 0.3,
    today: Optional[date] = None,
    generated_at: Optional[datetime] = None,
    model_name: str = "weekday-ema",
) -> Forecast:
    """Forecast one point per day for ``today + 1 .. today + horizon_days``."""
    reference_day = today or datetime.now(timezone.utc).date()
    daily_counts = build_daily_counts(bookings, reference_day)

    if daily_counts.empty:
        overall_mean = 0.0
        overall_std = 0.0
    else:
        overall_mean = float(daily_counts.mean())
        overall_std = float(daily_counts.std(ddof=0))

    by_weekday = weekday_averages(daily_counts)
    smoothed = exponential_moving_average(daily_counts, smoothing_factor)
    smoothed_by_date = {day: float(value) for day, value in smoothed.items()}

    points: list[ForecastPoint] = []
    for offset in range(1, horizon_days + 1):
        future_day = reference_day + timedelta(days=offset)
        weekday_mean = float(by_weekday.iloc[future_day.weekday()])
        baseline = weekday_mean if math.isfinite(weekday_mean) else overall_mean

        lagged = smoothed_by_date.get(future_day - timedelta(days=LAG_DAYS))
        if lagged is not None:
            baseline = WEEKDAY_WEIGHT * baseline + LAG_WEIGHT * lagged

        expected = baseline if math.isfinite(baseline) else 0.0
        probability = max(0.0, min(1.0, busy_probability(expected, overall_mean, overall_std)))
        points.append(
            ForecastPoint(
                date=future_day,
                expected_bookings=round(expected, 2),
                busy_probability=round(probability, 3),
                label=label_for(probability),
            )
        )

    return Forecast(
        points=points,
        model=model_name,
        generated_at=generated_at or datetime.now(timezone.utc),
        horizon_days=horizon_days,
        using_fallback=True,
        notes=LOCAL_NOTE,
    )


@dataclass(frozen=True)
class ForecastRequest:
    history: Sequence[Booking]
    config: ForecastConfig
    today: date


@dataclass(frozen=True)
class ForecastAttempt:
    strategy: str
    forecast: Optional[Forecast] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.forecast is not None


class ForecastStrategy(Protocol):
    name: str

    def produce(self, request: ForecastRequest) -> ForecastAttempt:
        ...


class RemoteForecastStrategy:
    """Adapter that reports remote failures as an attempt outcome."""

    name = "remote"

    def __init__(self, source: RemoteForecastSource) -> None:
        self._source = source

    def produce(self, request: ForecastRequest) -> ForecastAttempt:
        try:
            forecast = self._source.fetch_forecast(request.config.horizon_days)
        except Exception as exc:  # any remote failure is answered by the local model
            logger.warning("Remote forecast unavailable | error=%s", exc)
            return ForecastAttempt(strategy=self.name, error=str(exc) or type(exc).__name__)
        return ForecastAttempt(
            strategy=self.name,
            forecast=replace(forecast, using_fallback=False),
        )


class LocalForecastStrategy:
    """Weekday-EMA model recomputed only when the history signature changes."""

    name = "local"

    def __init__(
        self,
        model_name: str = "weekday-ema",
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._model_name = model_name
        self._clock = clock
        self._lock = RLock()
        self._cache_key: Optional[tuple[str, int, float, date]] = None
        self._cached: Optional[Forecast] = None
        self.computations = 0

    def produce(self, request: ForecastRequest) -> ForecastAttempt:
        key = (
            build_bookings_signature(request.history),
            request.config.horizon_days,
            request.config.smoothing_factor,
            request.today,
        )
        with self._lock:
            if self._cached is not None and key == self._cache_key:
                logger.debug("Local forecast reused | signature_length=%s", len(key[0]))
                return ForecastAttempt(strategy=self.name, forecast=self._cached)

            forecast = generate_busy_day_forecast(
                request.history,
                horizon_days=request.config.horizon_days,
                smoothing_factor=request.config.smoothing_factor,
                today=request.today,
                generated_at=self._clock(),
                model_name=self._model_name,
            )
            self._cache_key = key
            self._cached = forecast
            self.computations += 1
        logger.info(
            "Local forecast computed | history=%s | horizon_days=%s | smoothing_factor=%.3f",
            len(request.history),
            request.config.horizon_days,
            request.config.smoothing_factor,
        )
        return ForecastAttempt(strategy=self.name, forecast=forecast)


class RemoteFirstPolicy:
    """Try each strategy in order and keep the first successful attempt."""

    def __init__(self, strategies: Sequence[ForecastStrategy]) -> None:
        if not strategies:
            raise ValueError("RemoteFirstPolicy needs at least one strategy")
        self._strategies = list(strategies)

    def run(self, request: ForecastRequest) -> tuple[ForecastAttempt, list[ForecastAttempt]]:
        failures: list[ForecastAttempt] = []
        for strategy in self._strategies:
            attempt = strategy.produce(request)
            if attempt.succeeded:
                return attempt, failures
            failures.append(attempt)
        raise RuntimeError(
            "No forecast strategy succeeded: "
            + "; ".join(f"{item.strategy}={item.error}" for item in failures)
        )


class DemandForecastService:
    """Remote-first busy-day forecasts with a local weekday-EMA fallback."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        remote_source: Optional[RemoteForecastSource] = None,
        local_strategy: Optional[LocalForecastStrategy] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._local = local_strategy or LocalForecastStrategy(
            model_name=self._settings.forecast_model_name
        )
        self._remote_configured = remote_source is not None
        strategies: list[ForecastStrategy] = []
        if remote_source is not None:
            strategies.append(RemoteForecastStrategy(remote_source))
        strategies.append(self._local)
        self._policy = RemoteFirstPolicy(strategies)

    def _build_config(
        self,
        horizon_days: Optional[int],
        smoothing_factor: Optional[float],
    ) -> ForecastConfig:
        config = ForecastConfig(
            horizon_days=(
                horizon_days
                if horizon_days is not None
                else self._settings.forecast_horizon_days
            ),
            smoothing_factor=(
                smoothing_factor
                if smoothing_factor is not None
                else self._settings.forecast_smoothing_factor
            ),
            max_horizon_days=self._settings.forecast_max_horizon_days,
        )
        try:
            validate_forecast_config(config)
        except ValueError as exc:
            raise ForecastValidationError(str(exc)) from exc
        return config

    def forecast_busy_days(
        self,
        history: Sequence[Booking],
        horizon_days: Optional[int] = None,
        smoothing_factor: Optional[float] = None,
        today: Optional[date] = None,
    ) -> Forecast:
        config = self._build_config(horizon_days, smoothing_factor)
        request = ForecastRequest(
            history=list(history),
            config=config,
            today=today or datetime.now(timezone.utc).date(),
        )
        winner, failures = self._policy.run(request)
        forecast = winner.forecast

        if winner.strategy == LocalForecastStrategy.name and self._remote_configured:
            has_history = len(request.history) > 0
            forecast = replace(
                forecast,
                using_fallback=True,
                notes=FALLBACK_NOTE_WITH_HISTORY if has_history else FALLBACK_NOTE_WITHOUT_HISTORY,
                error=REMOTE_UNAVAILABLE_MESSAGE if has_history and failures else None,
            )

        logger.info(
            (
                "Forecast served | strategy=%s | using_fallback=%s | horizon_days=%s | "
                "failed_strategies=%s"
            ),
            winner.strategy,
            forecast.using_fallback,
            config.horizon_days,
            [item.strategy for item in failures],
        )
        return forecast
