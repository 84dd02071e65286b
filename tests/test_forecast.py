from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from itertools import count

import httpx
import pandas as pd
import pytest

from backend.domain.models import Booking, BookingStatus, BusyDayLabel, ResourceKind
from backend.services.forecast_service import (
    FALLBACK_NOTE_WITH_HISTORY,
    FALLBACK_NOTE_WITHOUT_HISTORY,
    LOCAL_NOTE,
    REMOTE_UNAVAILABLE_MESSAGE,
    DemandForecastService,
    ForecastValidationError,
    LocalForecastStrategy,
    build_bookings_signature,
    build_daily_counts,
    exponential_moving_average,
    generate_busy_day_forecast,
)
from backend.services.remote_forecast_client import BUSY_DAYS_PATH, RemoteForecastClient
from backend.utils.config import get_settings


_ids = count(1)


def _booking(day: date, quantity: int = 1, status: BookingStatus = BookingStatus.SUCCESS) -> Booking:
    start = datetime(day.year, day.month, day.day, 9, 0, tzinfo=timezone.utc)
    return Booking(
        booking_id=next(_ids),
        kind=ResourceKind.EQUIPMENT,
        resource_id=1,
        resource_name="Projector",
        start_time=start,
        end_time=start + timedelta(hours=1),
        requested_quantity=quantity,
        status=status,
        created_at=start - timedelta(days=1),
    )


def _two_week_history() -> list[Booking]:
    """Mondays carry 5 units, every other day 1 unit, 2025-03-03 .. 2025-03-16."""
    first_monday = date(2025, 3, 3)
    history = []
    for offset in range(14):
        day = first_monday + timedelta(days=offset)
        history.append(_booking(day, quantity=5 if day.weekday() == 0 else 1))
    return history


def _settings(**overrides):
    get_settings.cache_clear()
    return replace(get_settings(), forecast_remote_url=None, **overrides)


def _remote_client(handler) -> RemoteForecastClient:
    transport = httpx.MockTransport(handler)
    client = httpx.Client(base_url="http://analytics.test", transport=transport)
    return RemoteForecastClient(base_url="http://analytics.test", client=client)


def test_daily_counts_skip_cancellations_and_future_days():
    today = date(2025, 3, 16)
    history = [
        _booking(date(2025, 3, 10), quantity=2),
        _booking(date(2025, 3, 10), quantity=3),
        _booking(date(2025, 3, 11), status=BookingStatus.CANCEL),
        _booking(date(2025, 3, 20)),
    ]
    counts = build_daily_counts(history, today)
    assert list(counts.index) == [date(2025, 3, 10)]
    assert counts.iloc[0] == 5.0


def test_exponential_moving_average_recurrence():
    series = pd.Series([4.0, 0.0, 2.0])
    assert list(exponential_moving_average(series, 0.5)) == pytest.approx([4.0, 2.0, 2.0])
    assert list(exponential_moving_average(series, 0.0)) == pytest.approx([4.0, 4.0, 4.0])
    assert list(exponential_moving_average(series, 1.0)) == pytest.approx([4.0, 0.0, 2.0])


def test_weekly_single_booking_history():
    mondays = [date(2025, 3, 3) + timedelta(weeks=week) for week in range(4)]
    forecast = generate_busy_day_forecast(
        [_booking(day) for day in mondays],
        horizon_days=14,
        today=date(2025, 3, 26),
    )

    assert len(forecast.points) == 14
    assert forecast.points[0].date == date(2025, 3, 27)
    monday = next(point for point in forecast.points if point.date == date(2025, 3, 31))
    assert monday.expected_bookings == pytest.approx(1.0)
    # Zero variance history: equal to the mean maps to the neutral probability.
    assert all(point.busy_probability == pytest.approx(0.45) for point in forecast.points)
    assert all(point.label is BusyDayLabel.NORMAL for point in forecast.points)


def test_busy_and_quiet_days_follow_weekday_pattern():
    forecast = generate_busy_day_forecast(
        _two_week_history(),
        horizon_days=7,
        smoothing_factor=0.3,
        today=date(2025, 3, 16),
    )
    monday, tuesday = forecast.points[0], forecast.points[1]

    assert monday.date == date(2025, 3, 17)
    assert monday.expected_bookings == pytest.approx(3.52, abs=0.01)
    assert monday.label is BusyDayLabel.BUSY
    assert tuesday.expected_bookings == pytest.approx(1.64, abs=0.01)
    assert tuesday.label is BusyDayLabel.QUIET
    for point in forecast.points:
        assert 0.0 <= point.busy_probability <= 1.0


def test_empty_history_is_quiet_baseline():
    forecast = generate_busy_day_forecast([], horizon_days=5, today=date(2025, 3, 16))
    assert [point.expected_bookings for point in forecast.points] == [0.0] * 5
    assert all(point.busy_probability == pytest.approx(0.2) for point in forecast.points)
    assert all(point.label is BusyDayLabel.QUIET for point in forecast.points)
    assert forecast.notes == LOCAL_NOTE
    assert forecast.using_fallback is True


def test_forecast_is_deterministic_and_ignores_cancellations():
    generated_at = datetime(2025, 3, 16, 12, 0, tzinfo=timezone.utc)
    history = _two_week_history()
    first = generate_busy_day_forecast(history, today=date(2025, 3, 16), generated_at=generated_at)
    with_cancel = generate_busy_day_forecast(
        history + [_booking(date(2025, 3, 12), quantity=9, status=BookingStatus.CANCEL)],
        today=date(2025, 3, 16),
        generated_at=generated_at,
    )
    assert first == with_cancel


def test_bookings_signature_is_order_independent_and_skips_cancellations():
    history = _two_week_history()
    canceled = _booking(date(2025, 3, 12), status=BookingStatus.CANCEL)
    assert build_bookings_signature(history) == build_bookings_signature(list(reversed(history)))
    assert build_bookings_signature(history + [canceled]) == build_bookings_signature(history)
    assert build_bookings_signature(history[:-1]) != build_bookings_signature(history)


def test_local_strategy_reuses_cached_forecast_until_history_changes():
    local = LocalForecastStrategy()
    service = DemandForecastService(settings=_settings(), local_strategy=local)
    history = _two_week_history()
    today = date(2025, 3, 16)

    first = service.forecast_busy_days(history, today=today)
    second = service.forecast_busy_days(list(reversed(history)), today=today)
    assert local.computations == 1
    assert first is second

    service.forecast_busy_days(history + [_booking(date(2025, 3, 14))], today=today)
    assert local.computations == 2

    service.forecast_busy_days(history, horizon_days=7, today=today)
    assert local.computations == 3


def test_forecast_parameters_are_validated():
    service = DemandForecastService(settings=_settings())
    with pytest.raises(ForecastValidationError):
        service.forecast_busy_days([], horizon_days=0)
    with pytest.raises(ForecastValidationError):
        service.forecast_busy_days([], horizon_days=91)
    with pytest.raises(ForecastValidationError):
        service.forecast_busy_days([], smoothing_factor=1.5)


def test_defaults_come_from_settings():
    service = DemandForecastService(settings=_settings(forecast_horizon_days=3))
    forecast = service.forecast_busy_days([], today=date(2025, 3, 16))
    assert forecast.horizon_days == 3
    assert len(forecast.points) == 3
    assert forecast.model == "weekday-ema"


def test_remote_forecast_is_preferred_when_available():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["horizon"] = request.url.params["horizon_days"]
        return httpx.Response(
            200,
            json={
                "generated_at": "2025-03-16T08:00:00Z",
                "horizon_days": 2,
                "model": "remote-seasonal",
                "points": [
                    {
                        "date": "2025-03-17",
                        "expectedBookings": 7.5,
                        "busyProbability": 0.91,
                        "label": "BUSY",
                    },
                    {
                        "date": "2025-03-18",
                        "expectedBookings": 0.5,
                        "busyProbability": 0.1,
                        "label": "QUIET",
                    },
                ],
            },
        )

    local = LocalForecastStrategy()
    service = DemandForecastService(
        settings=_settings(),
        remote_source=_remote_client(handler),
        local_strategy=local,
    )
    forecast = service.forecast_busy_days(_two_week_history(), horizon_days=2)

    assert seen == {"path": BUSY_DAYS_PATH, "horizon": "2"}
    assert forecast.model == "remote-seasonal"
    assert forecast.using_fallback is False
    assert forecast.error is None
    assert [point.label for point in forecast.points] == [BusyDayLabel.BUSY, BusyDayLabel.QUIET]
    assert local.computations == 0


@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(500, json={"error": "down"}),
        lambda request: httpx.Response(200, json={"points": "not-a-list"}),
        lambda request: httpx.Response(200, content=b"<html>gateway</html>"),
    ],
    ids=["server-error", "schema-mismatch", "not-json"],
)
def test_remote_failure_falls_back_to_local_model(handler):
    service = DemandForecastService(settings=_settings(), remote_source=_remote_client(handler))
    history = _two_week_history()
    forecast = service.forecast_busy_days(history, horizon_days=7, today=date(2025, 3, 16))
    local = generate_busy_day_forecast(history, horizon_days=7, today=date(2025, 3, 16))

    assert forecast.using_fallback is True
    assert forecast.notes == FALLBACK_NOTE_WITH_HISTORY
    assert forecast.error == REMOTE_UNAVAILABLE_MESSAGE
    assert forecast.points == local.points
    assert forecast.model == "weekday-ema"


def test_unreachable_remote_without_history_reports_baseline_note():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    service = DemandForecastService(settings=_settings(), remote_source=_remote_client(handler))
    forecast = service.forecast_busy_days([], horizon_days=3, today=date(2025, 3, 16))

    assert forecast.using_fallback is True
    assert forecast.notes == FALLBACK_NOTE_WITHOUT_HISTORY
    assert forecast.error is None
    assert all(point.label is BusyDayLabel.QUIET for point in forecast.points)


def test_local_only_service_reports_local_note():
    service = DemandForecastService(settings=_settings())
    forecast = service.forecast_busy_days(_two_week_history(), today=date(2025, 3, 16))
    assert forecast.notes == LOCAL_NOTE
    assert forecast.error is None


def test_remote_client_is_disabled_without_url():
    assert RemoteForecastClient.from_settings(_settings()) is None
