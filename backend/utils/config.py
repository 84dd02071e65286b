"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_optional_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_tuple(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str

    database_path: Path
    sqlite_timeout_seconds: float
    seed_demo_data: bool
    synthetic_history_days: int
    synthetic_random_seed: int

    booking_staff_roles: tuple[str, ...]
    booking_bookable_statuses: tuple[str, ...]
    booking_default_quantity: int

    forecast_horizon_days: int
    forecast_max_horizon_days: int
    forecast_smoothing_factor: float
    forecast_model_name: str
    forecast_remote_url: Optional[str]
    forecast_remote_timeout_seconds: float


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests call ``get_settings.cache_clear()``."""
    return Settings(
        app_name=_env_str("APP_NAME", "Campus Resource Booking"),
        app_version=_env_str("APP_VERSION", "0.1.0"),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        database_path=Path(
            _env_str(
                "BOOKING_DATABASE_PATH",
                str(PROJECT_ROOT / "data" / "bookings.db"),
            )
        ),
        sqlite_timeout_seconds=_env_float("SQLITE_TIMEOUT_SECONDS", 10.0),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
        synthetic_history_days=_env_int("SYNTHETIC_HISTORY_DAYS", 45),
        synthetic_random_seed=_env_int("SYNTHETIC_RANDOM_SEED", 42),
        booking_staff_roles=tuple(
            role.upper() for role in _env_tuple("BOOKING_STAFF_ROLES", ("ADMIN", "STAFF"))
        ),
        booking_bookable_statuses=_env_tuple("BOOKING_BOOKABLE_STATUSES", ("Available",)),
        booking_default_quantity=_env_int("BOOKING_DEFAULT_QUANTITY", 1),
        forecast_horizon_days=_env_int("FORECAST_HORIZON_DAYS", 14),
        forecast_max_horizon_days=_env_int("FORECAST_MAX_HORIZON_DAYS", 90),
        forecast_smoothing_factor=_env_float("FORECAST_SMOOTHING_FACTOR", 0.3),
        forecast_model_name=_env_str("FORECAST_MODEL_NAME", "weekday-ema"),
        forecast_remote_url=_env_optional_str("FORECAST_REMOTE_URL"),
        forecast_remote_timeout_seconds=_env_float("FORECAST_REMOTE_TIMEOUT_SECONDS", 3.0),
    )
