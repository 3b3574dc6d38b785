import inspect

import pytest
from fastapi.testclient import TestClient

from routeplanner.api.v1.endpoints import routes
from routeplanner.core.dependencies import get_now
from routeplanner.main import create_app
from routeplanner.services.day_route_service import RoutePlannerRegistry

from fakes import NOW, VENDOR, client_record

BASE = f"/api/v1/routes/{VENDOR}"


@pytest.fixture
def client(settings, fake_api, calendar, session_factory):
    fake_api.clients = [
        client_record("Lejos", lat=25.5, lon=-108.0),
        client_record("Farmacia Centro", lat=24.80, lon=-107.40),
        client_record("Tienda Sur", lat=24.76, lon=-107.38),
        client_record("Abarrotes Luna", day="Lunes", client_type="CLEY", delivery_day="Miercoles"),
    ]
    registry = RoutePlannerRegistry(fake_api, calendar, session_factory, settings)
    app = create_app(settings, registry=registry)
    app.dependency_overrides[get_now] = lambda: NOW
    with TestClient(app) as test_client:
        yield test_client


def pending(client, day="Miercoles"):
    response = client.get(f"{BASE}/days/{day}")
    assert response.status_code == 200
    return [o["key"] for o in response.json()["pending"]]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Request-Id" in response.headers


def test_day_route_is_ordered_from_depot(client):
    response = client.get(f"{BASE}/days/miercoles")

    assert response.status_code == 200
    data = response.json()
    assert data["day"] == "Miercoles"
    assert data["route_date"] == "2025-06-18"
    assert data["is_today"] is True
    assert [o["key"] for o in data["pending"]] == [
        "Abarrotes Luna (Entrega)", "Tienda Sur", "Farmacia Centro", "Lejos",
    ]
    assert data["pending_count"] == 4
    assert data["total_distance_km"] > 0
    assert data["route_url"].startswith("https://www.google.com/maps/dir/?api=1")
    assert data["pending"][0]["status_text"] == "Primera visita"


def test_dual_cadence_order_visit_appears_on_its_own_day(client):
    assert pending(client, "Lunes") == ["Abarrotes Luna (Pedidos)"]


def test_invalid_day(client):
    response = client.get(f"{BASE}/days/Funday")

    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "INVALID_WEEKDAY"
    assert body["field"] == "day"


def test_complete_visit(client, fake_api):
    response = client.post(f"{BASE}/visits/complete", json={
        "occurrence_key": "Tienda Sur", "notes": "pedido levantado", "latitude": 24.76, "longitude": -107.38,
    })

    assert response.status_code == 200
    assert response.json() == {
        "occurrence_key": "Tienda Sur", "status": "completed", "applied": True, "message": None,
    }
    data = client.get(f"{BASE}/days/Miercoles").json()
    assert [o["key"] for o in data["completed"]] == ["Tienda Sur"]
    assert "Tienda Sur" not in [o["key"] for o in data["pending"]]
    assert data["session"]["in_progress"] is True
    assert fake_api.count("update_visit_status") == 1


def test_backend_failure_is_reported_as_bad_gateway(client, fake_api):
    fake_api.failing.add("update_visit_status")
    response = client.post(f"{BASE}/visits/complete", json={"occurrence_key": "Tienda Sur"})

    assert response.status_code == 502
    assert response.json()["error_code"] == "EXTERNAL_SERVICE_ERROR"
    assert "Tienda Sur" in pending(client)


def test_unknown_visit(client):
    response = client.post(f"{BASE}/visits/skip", json={"occurrence_key": "Nadie"})
    assert response.status_code == 404
    assert response.json()["error_code"] == "RESOURCE_NOT_FOUND"


def test_invalid_request_body(client):
    response = client.post(f"{BASE}/visits/complete", json={"occurrence_key": "Tienda Sur", "latitude": 200})
    assert response.status_code == 422


def test_postpone_and_reschedule(client, fake_api):
    response = client.post(f"{BASE}/visits/postpone", json={"occurrence_key": "Tienda Sur", "candidate_day": "Jueves"})
    assert response.status_code == 200
    assert response.json()["status"] == "postponed"

    data = client.get(f"{BASE}/days/Miercoles").json()
    assert "Tienda Sur" not in [o["key"] for o in data["pending"]]
    assert [p["key"] for p in data["postponed"]] == ["Tienda Sur"]
    assert data["postponed"][0]["original_day"] == "Miercoles"
    assert data["postponed"][0]["candidate_day"] == "Jueves"

    response = client.post(f"{BASE}/visits/reschedule", json={"occurrence_key": "Tienda Sur", "target_day": "Jueves"})
    assert response.status_code == 200
    assert response.json()["applied"] is True
    assert fake_api.count("batch_reschedule") == 1

    assert "Tienda Sur" in pending(client, "Jueves")
    assert "Tienda Sur" not in pending(client, "Miercoles")


def test_postponing_regular_client_without_candidate_day(client, fake_api):
    response = client.post(f"{BASE}/visits/postpone", json={"occurrence_key": "Tienda Sur"})

    assert response.status_code == 400
    body = response.json()
    assert body["error_code"] == "CANDIDATE_DAY_REQUIRED"
    assert body["field"] == "candidate_day"
    assert "Tienda Sur" in pending(client)
    assert fake_api.count("batch_reschedule") == 0


def test_reschedule_of_visit_that_is_not_postponed(client, fake_api):
    response = client.post(f"{BASE}/visits/reschedule", json={"occurrence_key": "Tienda Sur", "target_day": "Jueves"})

    assert response.status_code == 200
    assert response.json()["applied"] is False
    assert response.json()["message"] == "Visit is not postponed"
    assert fake_api.count("batch_reschedule") == 0


def test_dual_cadence_reschedules_are_committed_together(client, fake_api):
    key = "Abarrotes Luna (Entrega)"
    client.post(f"{BASE}/visits/postpone", json={"occurrence_key": key})
    client.post(f"{BASE}/visits/reschedule", json={"occurrence_key": key, "target_day": "Viernes"})

    data = client.get(f"{BASE}/days/Miercoles").json()
    assert data["pending_reschedules"] == [{
        "client_name": "Abarrotes Luna", "original_day": "Miercoles", "new_day": "Viernes", "visit_kind": "Entrega",
    }]
    assert fake_api.count("batch_reschedule") == 0

    response = client.post(f"{BASE}/reschedules/commit")
    assert response.status_code == 200
    assert response.json() == {"saved": 1}
    assert key in pending(client, "Viernes")


def test_commit_without_pending_reschedules(client):
    response = client.post(f"{BASE}/reschedules/commit")
    assert response.status_code == 400
    assert response.json()["error_code"] == "NO_PENDING_RESCHEDULES"


def test_finish_requires_started_route(client, fake_api):
    response = client.post(f"{BASE}/session/finish")

    assert response.status_code == 400
    assert response.json()["error_code"] == "ROUTE_NOT_STARTED"
    assert fake_api.count("update_route_summary") == 0


def test_start_then_finish_route(client, fake_api):
    response = client.post(f"{BASE}/session/start")
    assert response.status_code == 200
    assert response.json()["in_progress"] is True

    client.post(f"{BASE}/visits/complete", json={"occurrence_key": "Tienda Sur"})
    response = client.post(f"{BASE}/session/finish")

    assert response.status_code == 200
    summary = response.json()
    assert summary["visited_count"] == 1
    assert summary["scheduled_count"] == 4
    assert summary["observations"].startswith("Visitados: Tienda Sur. No visitados: ")
    assert fake_api.count("update_route_summary") == 1

    session = client.get(f"{BASE}/days/Miercoles").json()["session"]
    assert session["finished_today"] is True
    assert session["in_progress"] is False


def test_load_reports_unavailable_sheets(client, fake_api):
    fake_api.failing.add("fetch_programacion")
    response = client.post(f"{BASE}/load")

    assert response.status_code == 200
    body = response.json()
    assert body["clients"] == 4
    assert len(body["warnings"]) == 1
    assert body["warnings"][0].startswith("programacion")


def test_route_handlers_run_on_the_event_loop():
    # Sync handlers would run in the threadpool and touch planner state off the loop
    handlers = [route.endpoint for route in routes.router.routes]
    assert handlers
    assert all(inspect.iscoroutinefunction(handler) for handler in handlers)
