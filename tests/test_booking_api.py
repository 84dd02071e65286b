from __future__ import annotations

import inspect
from dataclasses import replace

from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from app import create_app
from backend.domain.models import ResourceKind
from backend.utils.config import get_settings


ADMIN_HEADERS = {"X-Actor-Name": "Admin Office", "X-Actor-Role": "admin"}
STUDENT_HEADERS = {"X-Actor-Name": "Maria Santos", "X-Actor-Role": "STUDENT"}


def _build_test_settings(tmp_path, filename: str, seed: bool = False):
    get_settings.cache_clear()
    return replace(
        get_settings(),
        database_path=tmp_path / filename,
        seed_demo_data=seed,
        forecast_remote_url=None,
    )


def _build_client(tmp_path, filename: str = "api.db", seed: bool = False) -> TestClient:
    return TestClient(create_app(_build_test_settings(tmp_path, filename, seed)))


def _payload(resource_id: int, start: str, end: str, kind: str = "FACILITY", **extra) -> dict:
    payload = {
        "kind": kind,
        "resource_id": resource_id,
        "resource_name": "",
        "start_time": start,
        "end_time": end,
        "requester_name": "Maria Santos",
        "requester_role": "STUDENT",
    }
    payload.update(extra)
    return payload


def _create_room(client: TestClient, name: str = "Drawing Room", quantity: int = 1, kind: str = "FACILITY"):
    return client.app.state.repository.create_resource(ResourceKind(kind), name, quantity)


def test_health_endpoint(tmp_path):
    with _build_client(tmp_path) as client:
        response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_booking_lifecycle_over_http(tmp_path):
    with _build_client(tmp_path) as client:
        room = _create_room(client)

        created = client.post(
            "/api/bookings",
            json=_payload(room.resource_id, "2025-03-10T10:00:00Z", "2025-03-10T11:00:00Z"),
        )
        assert created.status_code == 201, created.text
        body = created.json()
        assert body["status"] == "REQUEST"
        assert body["quantity"] == 1
        assert body["resource_name"] == "Drawing Room"
        booking_id = body["id"]

        conflict = client.post(
            "/api/bookings",
            json=_payload(room.resource_id, "2025-03-10T10:30:00Z", "2025-03-10T11:30:00Z"),
        )
        assert conflict.status_code == 409
        assert conflict.json()["detail"]["error"] == "CONFLICT"

        adjacent = client.post(
            "/api/bookings",
            json=_payload(room.resource_id, "2025-03-10T11:00:00Z", "2025-03-10T12:00:00Z"),
        )
        assert adjacent.status_code == 201

        forbidden = client.post(f"/api/bookings/{booking_id}/start", headers=STUDENT_HEADERS)
        assert forbidden.status_code == 403

        started = client.post(f"/api/bookings/{booking_id}/start", headers=ADMIN_HEADERS)
        assert started.status_code == 200
        assert started.json()["status"] == "ONGOING"
        assert started.json()["started_at"] is not None

        again = client.post(f"/api/bookings/{booking_id}/start", headers=ADMIN_HEADERS)
        assert again.status_code == 409

        finished = client.post(f"/api/bookings/{booking_id}/finish", headers=ADMIN_HEADERS)
        assert finished.status_code == 200
        assert finished.json()["status"] == "SUCCESS"

        fetched = client.get(f"/api/bookings/{booking_id}")
        assert fetched.json()["ended_at"] is not None

        listed = client.get("/api/bookings", params={"status": "REQUEST"})
        assert [item["id"] for item in listed.json()] == [adjacent.json()["id"]]


def test_owner_cancels_own_booking(tmp_path):
    with _build_client(tmp_path) as client:
        room = _create_room(client)
        booking = client.post(
            "/api/bookings",
            json=_payload(room.resource_id, "2025-03-10T10:00:00Z", "2025-03-10T11:00:00Z"),
        ).json()

        other = client.post(
            f"/api/bookings/{booking['id']}/cancel",
            headers={"X-Actor-Name": "Robert Chen", "X-Actor-Role": "FACULTY"},
        )
        assert other.status_code == 403

        own = client.post(f"/api/bookings/{booking['id']}/cancel", headers=STUDENT_HEADERS)
        assert own.status_code == 200
        assert own.json()["status"] == "CANCEL"
        assert own.json()["canceled_at"] is not None


def test_transition_requires_actor_role(tmp_path):
    with _build_client(tmp_path) as client:
        response = client.post("/api/bookings/1/start")
    assert response.status_code == 401


def test_unknown_booking_returns_404(tmp_path):
    with _build_client(tmp_path) as client:
        assert client.get("/api/bookings/999").status_code == 404
        assert client.post("/api/bookings/999/cancel", headers=ADMIN_HEADERS).status_code == 404


def test_invalid_requests_are_rejected(tmp_path):
    with _build_client(tmp_path) as client:
        room = _create_room(client)
        chairs = _create_room(client, "Chair - Monobloc", 10, kind="EQUIPMENT")

        reversed_range = client.post(
            "/api/bookings",
            json=_payload(room.resource_id, "2025-03-10T11:00:00Z", "2025-03-10T10:00:00Z"),
        )
        assert reversed_range.status_code == 400

        zero_quantity = client.post(
            "/api/bookings",
            json=_payload(
                chairs.resource_id,
                "2025-03-10T10:00:00Z",
                "2025-03-10T11:00:00Z",
                kind="EQUIPMENT",
                quantity=0,
            ),
        )
        assert zero_quantity.status_code == 400

        missing = client.post(
            "/api/bookings",
            json=_payload(9999, "2025-03-10T10:00:00Z", "2025-03-10T11:00:00Z"),
        )
        assert missing.status_code == 422
        assert isinstance(missing.json()["detail"], str)

        naive = client.post(
            "/api/bookings",
            json=_payload(room.resource_id, "2025-03-10T10:00:00", "2025-03-10T11:00:00"),
        )
        assert naive.status_code == 400

        assert client.get("/api/bookings").json() == []


def test_equipment_quantity_over_http(tmp_path):
    with _build_client(tmp_path) as client:
        chairs = _create_room(client, "Chair - Monobloc", 10, kind="EQUIPMENT")

        def book(quantity: int, start: str, end: str):
            return client.post(
                "/api/bookings",
                json=_payload(chairs.resource_id, start, end, kind="EQUIPMENT", quantity=quantity),
            )

        assert book(6, "2025-03-10T09:00:00Z", "2025-03-10T10:00:00Z").status_code == 201
        assert book(5, "2025-03-10T09:30:00Z", "2025-03-10T10:30:00Z").status_code == 409
        assert book(4, "2025-03-10T09:30:00+08:00", "2025-03-10T10:30:00+08:00").status_code == 201
        assert book(4, "2025-03-10T09:30:00Z", "2025-03-10T10:30:00Z").status_code == 201


def test_busy_days_forecast_endpoint_with_seeded_history(tmp_path):
    with _build_client(tmp_path, seed=True) as client:
        response = client.get("/api/analytics/busy-days", params={"horizon_days": 5})
        assert response.status_code == 200
        body = response.json()
        assert body["horizon_days"] == 5
        assert body["model"] == "weekday-ema"
        assert body["usingFallback"] is True
        assert len(body["points"]) == 5
        for point in body["points"]:
            assert set(point) == {"date", "expectedBookings", "busyProbability", "label"}
            assert 0.0 <= point["busyProbability"] <= 1.0
            assert point["label"] in {"BUSY", "NORMAL", "QUIET"}

        invalid = client.get("/api/analytics/busy-days", params={"smoothing_factor": 2})
        assert invalid.status_code == 400


def test_malformed_input_and_unavailable_resource_use_distinct_codes(tmp_path):
    with _build_client(tmp_path) as client:
        car = client.app.state.repository.create_resource(
            ResourceKind.VEHICLE, "Car 3", 1, status="Maintenance"
        )

        unavailable = client.post(
            "/api/bookings",
            json=_payload(car.resource_id, "2025-03-10T10:00:00Z", "2025-03-10T11:00:00Z", kind="VEHICLE"),
        )
        naive = client.post(
            "/api/bookings",
            json=_payload(car.resource_id, "2025-03-10T10:00:00", "2025-03-10T11:00:00", kind="VEHICLE"),
        )
        missing_times = client.post(
            "/api/bookings",
            json={"kind": "VEHICLE", "resource_id": car.resource_id},
        )

    assert unavailable.status_code == 422
    assert naive.status_code == 400
    assert missing_times.status_code == 400
    assert isinstance(missing_times.json()["detail"], list)
    assert unavailable.status_code != naive.status_code


def test_ids_beyond_storage_range_are_rejected_as_bad_input(tmp_path):
    huge = 2**70
    with _build_client(tmp_path) as client:
        created = client.post(
            "/api/bookings",
            json=_payload(huge, "2025-03-10T10:00:00Z", "2025-03-10T11:00:00Z"),
        )
        started = client.post(f"/api/bookings/{huge}/start", headers=ADMIN_HEADERS)
        fetched = client.get(f"/api/bookings/{huge}")
        listed = client.get("/api/bookings", params={"resource_id": huge})
        largest = client.get(f"/api/bookings/{2**63 - 1}")

    assert created.status_code == 400
    assert started.status_code == 400
    assert fetched.status_code == 400
    assert listed.status_code == 400
    assert largest.status_code == 404


def test_storage_backed_routes_run_in_threadpool(tmp_path):
    app = create_app(_build_test_settings(tmp_path, "routes.db"))
    blocking_routes = [
        route
        for route in app.routes
        if isinstance(route, APIRoute) and route.path != "/api/health"
    ]
    assert {route.path for route in blocking_routes} >= {
        "/api/bookings",
        "/api/bookings/{booking_id}",
        "/api/bookings/{booking_id}/start",
        "/api/analytics/busy-days",
        "/api/resources",
    }
    for route in blocking_routes:
        assert not inspect.iscoroutinefunction(route.endpoint), route.path


def test_resource_catalog_is_listed_by_kind(tmp_path):
    with _build_client(tmp_path, seed=True) as client:
        everything = client.get("/api/resources")
        equipment = client.get("/api/resources", params={"kind": "EQUIPMENT"})
        invalid = client.get("/api/resources", params={"kind": "SPACESHIP"})

    assert everything.status_code == 200
    assert {item["kind"] for item in everything.json()} == {"VEHICLE", "FACILITY", "EQUIPMENT"}
    assert equipment.status_code == 200
    assert {item["kind"] for item in equipment.json()} == {"EQUIPMENT"}
    chairs = next(item for item in equipment.json() if item["name"] == "Chair - Monobloc")
    assert chairs["quantity"] == 100
    assert invalid.status_code == 400
