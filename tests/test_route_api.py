import asyncio
import json
from datetime import date

import httpx
import pytest

from routeplanner.core.exceptions import BackendOperationError
from routeplanner.repositories.route_api import RouteApiClient
from routeplanner.schemas.route import RescheduleItem, RouteSummary, VisitKind, VisitStatus

BASE_URL = "http://backend.test"
VENDOR = "ana@example.com"


def run_with(handler, operation):
    """Run ``operation(client)`` against a client backed by ``handler``."""
    async def main():
        client = RouteApiClient(BASE_URL, transport=httpx.MockTransport(handler))
        try:
            return await operation(client)
        finally:
            await client.aclose()

    return asyncio.run(main())


def recording(response_json=None, status_code=200):
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(status_code, json=response_json if response_json is not None else {"success": True})

    return seen, handler


def test_fetch_clients_parses_sheet_aliases():
    seen, handler = recording({"data": [
        {"Nombre": "Tienda Sur", "Latitude": "24.76", "Longitud": "-107.38", "Dia": "Martes",
         "Frecuencia": "2", "Tipo_Cliente": "", "Vendedor": VENDOR, "Entrega": ""},
        {"Nombre": "Abarrotes Luna", "Latitude": "", "Longitud": None, "Dia": "Lunes",
         "Frecuencia": "", "Tipo_Cliente": "CLEY", "Entrega": "Jueves"},
        {"Nombre": "", "Dia": "Lunes"},
        "not a row",
    ]})

    clients = run_with(handler, lambda c: c.fetch_clients(VENDOR))

    assert [c.name for c in clients] == ["Tienda Sur", "Abarrotes Luna"]
    tienda, luna = clients
    assert (tienda.latitude, tienda.longitude, tienda.frequency) == (24.76, -107.38, 2)
    assert tienda.delivery_day is None
    assert (luna.latitude, luna.longitude, luna.frequency) == (0.0, 0.0, 1)
    assert luna.delivery_day == "Jueves"

    (request,) = seen
    assert request.method == "GET"
    assert request.url.path == "/api/recorridos"
    assert request.url.params["sheet"] == "clientes"
    assert request.url.params["email"] == VENDOR


def test_fetch_history_and_performance_rows():
    def handler(request):
        sheet = request.url.params["sheet"]
        if sheet == "metricas":
            return httpx.Response(200, json={"data": [
                {"cliente": "Tienda Sur", "fecha": "2025-06-03", "tipo_visita": "completed", "semana": 23},
            ]})
        return httpx.Response(200, json={"data": [
            {"fecha": "2025-06-18", "dia_ruta": "Miercoles", "vendedor": "Ana Ruiz",
             "tiempo_inicio": "08:15", "tiempo_fin": "14:30"},
        ]})

    async def both(client):
        return await client.fetch_visit_history(VENDOR), await client.fetch_route_performance(VENDOR)

    (history,), (performance,) = run_with(handler, both)
    assert history.week == "23"
    assert history.visit_date == "2025-06-03"
    assert performance.route_day == "Miercoles"
    assert performance.end_time == "14:30"


def test_empty_payload_yields_no_rows():
    _, handler = recording({"success": True})
    assert run_with(handler, lambda c: c.fetch_reschedules(VENDOR)) == []


@pytest.mark.parametrize("status_code", [404, 500, 503])
def test_http_errors_raise_backend_error(status_code):
    _, handler = recording({"error": "boom"}, status_code=status_code)

    with pytest.raises(BackendOperationError) as exc_info:
        run_with(handler, lambda c: c.fetch_clients(VENDOR))

    assert exc_info.value.status_code == 502
    assert str(status_code) in exc_info.value.detail


def test_connection_failure_raises_backend_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BackendOperationError):
        run_with(handler, lambda c: c.update_visit_status(
            VENDOR, "Tienda Sur", "Martes", VisitStatus.COMPLETED, date(2025, 6, 17),
        ))


def test_invalid_json_raises_backend_error():
    def handler(request):
        return httpx.Response(200, content=b"<html>error</html>")

    with pytest.raises(BackendOperationError):
        run_with(handler, lambda c: c.fetch_route_config(VENDOR))


def test_update_visit_status_payload_for_dual_cadence_visit():
    seen, handler = recording({"success": True, "data": {"fecha": "2025-06-18"}})

    response = run_with(handler, lambda c: c.update_visit_status(
        VENDOR, "Abarrotes Luna", "Miercoles", VisitStatus.COMPLETED, date(2025, 6, 18),
        visit_kind=VisitKind.DELIVERY, notes="sin faltantes", location={"lat": 24.7, "lng": -107.3},
    ))

    assert response["data"]["fecha"] == "2025-06-18"
    body = json.loads(seen[0].content)
    assert seen[0].url.path == "/api/recorridos/update"
    assert body == {
        "action": "update_visit_status",
        "userEmail": VENDOR,
        "clientName": "Abarrotes Luna",
        "routeDay": "Miercoles",
        "visitType": "completed",
        "visitDate": "2025-06-18",
        "location": {"lat": 24.7, "lng": -107.3},
        "notes": "Entrega: sin faltantes",
        "cleyVisitType": "Entrega",
    }


def test_regular_visit_notes_are_sent_unchanged():
    seen, handler = recording()
    run_with(handler, lambda c: c.update_visit_status(
        VENDOR, "Tienda Sur", "Martes", VisitStatus.SKIPPED, date(2025, 6, 17),
    ))

    body = json.loads(seen[0].content)
    assert body["notes"] == ""
    assert body["visitType"] == "skipped"
    assert body["cleyVisitType"] == "Normal"


def test_reschedule_writes():
    seen, handler = recording()
    items = [
        RescheduleItem(client_name="Abarrotes Luna", original_day="Lunes", new_day="Martes",
                       visit_kind=VisitKind.ORDER),
        RescheduleItem(client_name="Tienda Sur", original_day="Martes", new_day="Jueves",
                       visit_kind=VisitKind.NORMAL),
    ]

    async def writes(client):
        await client.batch_reschedule(VENDOR, items)
        await client.deactivate_reschedule(VENDOR, "Abarrotes Luna", VisitKind.ORDER)

    run_with(handler, writes)

    batch, deactivate = (json.loads(r.content) for r in seen)
    assert all(r.url.path == "/api/recorridos/reschedule" for r in seen)
    assert batch["action"] == "batch_reschedule"
    assert batch["reschedules"][1] == {
        "clientName": "Tienda Sur", "originalDay": "Martes", "newDay": "Jueves", "visitType": "Normal",
    }
    assert deactivate == {
        "action": "deactivate_reschedule", "userEmail": VENDOR,
        "clientName": "Abarrotes Luna", "visitType": "Pedidos",
    }


def test_route_summary_uses_sheet_columns():
    seen, handler = recording()
    summary = RouteSummary(
        route_day="Miercoles", route_date=date(2025, 6, 18), scheduled_count=5, visited_count=4,
        start_time="08:00", end_time="13:45", distance_km=12, fuel_cost=14,
        observations="Visitados: A, B, C, D. No visitados: E",
    )

    run_with(handler, lambda c: c.save_route_summary(VENDOR, summary))

    body = json.loads(seen[0].content)
    assert body["action"] == "update_route_summary"
    assert body["fecha"] == "2025-06-18"
    assert body["clientesProgramados"] == 5
    assert body["clientesVisitados"] == 4
    assert body["kilometrosRecorridos"] == 12
    assert body["combustibleGastado"] == 14
    assert body["tiempoInicio"] == "08:00"
    assert body["tiempoFin"] == "13:45"
