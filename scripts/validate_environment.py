#!/usr/bin/env python3
"""Validate local booking-service environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from importlib.metadata import version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.domain.exceptions import BookingConflictError
from backend.domain.models import Actor, BookingRequest, ResourceKind
from backend.repository.data_repository import DataRepository
from backend.services.auth_service import RoleAuthorizationService
from backend.services.booking_service import BookingLifecycleService
from backend.services.forecast_service import DemandForecastService
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="booking-env-")

    # CHECK 1 — Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2 — Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            _ = version(dist_name)
        except Exception as exc:  # pragma: no cover - runtime guard
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "booking_validation.db",
            forecast_remote_url=None,
        )
        repository = DataRepository(validation_settings)

        # CHECK 3 — Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4 — Catalog and history seeding
        try:
            resources = repository.seed_catalog()
            bookings = repository.seed_booking_history()
            if resources == 0 or bookings == 0:
                raise RuntimeError(f"seeded resources={resources} bookings={bookings}")
            ok, line = _print_result(
                "Demo data seeding",
                True,
                f": {resources} resources, {bookings} bookings",
            )
        except Exception as exc:
            ok, line = _print_result("Demo data seeding", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5 — Capacity-aware admission
        try:
            resource = repository.create_resource(ResourceKind.FACILITY, "Validation Room", 1)
            service = BookingLifecycleService(
                catalog=repository,
                store=repository,
                authorizer=RoleAuthorizationService(validation_settings),
                settings=validation_settings,
            )
            start = datetime.now(timezone.utc) + timedelta(days=1)
            request = BookingRequest(
                kind=ResourceKind.FACILITY,
                resource_id=resource.resource_id,
                resource_name=resource.name,
                start_time=start,
                end_time=start + timedelta(hours=1),
            )
            actor = Actor(name="validator", role="STUDENT")
            service.submit_booking(request, actor=actor)
            try:
                service.submit_booking(request, actor=actor)
            except BookingConflictError:
                pass
            else:
                raise RuntimeError("second booking was admitted over capacity")
            ok, line = _print_result("Booking admission and conflict rejection", True)
        except Exception as exc:
            ok, line = _print_result("Booking admission", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6 — Local forecast
        try:
            forecast_service = DemandForecastService(settings=validation_settings)
            forecast = forecast_service.forecast_busy_days(
                repository.list_bookings(),
                horizon_days=7,
                today=date.today(),
            )
            if len(forecast.points) != 7:
                raise RuntimeError(f"expected 7 points, got {len(forecast.points)}")
            busiest = max(forecast.points, key=lambda point: point.busy_probability)
            ok, line = _print_result(
                "Local forecast",
                True,
                f": busiest={busiest.date.isoformat()} p={busiest.busy_probability:.3f}",
            )
        except Exception as exc:
            ok, line = _print_result("Local forecast", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Booking Service Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
