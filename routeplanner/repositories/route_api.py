"""
Client for the spreadsheet-backed routes API.

Reads the roster, visit history, schedule, active reschedules, route
performance and route configuration sheets for a vendor, and writes visit
transitions, reschedules and route summaries back.
"""

import logging
import time
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from routeplanner.config.logging import log_backend_call
from routeplanner.core.exceptions import BackendOperationError
from routeplanner.schemas.route import (
    ClientRecord,
    ConfigRow,
    RescheduleItem,
    RescheduleRow,
    RoutePerformanceRow,
    RouteSummary,
    ScheduledVisitRow,
    VisitHistoryRow,
    VisitKind,
    VisitStatus,
)

logger = logging.getLogger("routeplanner.backend")

RowType = TypeVar("RowType", bound=BaseModel)

READ_PATH = "/api/recorridos"
UPDATE_PATH = "/api/recorridos/update"
RESCHEDULE_PATH = "/api/recorridos/reschedule"


class Sheet:
    CLIENTS = "clientes"
    HISTORY = "metricas"
    SCHEDULE = "programacion"
    RESCHEDULES = "reprogramadas"
    PERFORMANCE = "performance"
    CONFIG = "configuracion"


class RouteApiClient:
    """Async wrapper around the routes API; every failure raises BackendOperationError."""

    def __init__(self, base_url: str, timeout: float = 15.0,
                 client: Optional[httpx.AsyncClient] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "RouteApiClient":
        return cls(
            base_url=settings.BACKEND_API_URL,
            timeout=settings.BACKEND_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, operation: str, vendor: str,
                       **kwargs) -> Dict[str, Any]:
        start = time.perf_counter()
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log_backend_call(operation, vendor, time.perf_counter() - start, ok=False)
            raise BackendOperationError(
                operation, f"{operation} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            log_backend_call(operation, vendor, time.perf_counter() - start, ok=False)
            raise BackendOperationError(operation, f"{operation} failed: {e}") from e

        log_backend_call(operation, vendor, time.perf_counter() - start)
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as e:
            raise BackendOperationError(operation, f"{operation} returned invalid JSON") from e
        return payload if isinstance(payload, dict) else {"data": payload}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _fetch_sheet(self, vendor: str, sheet: str, row_type: Type[RowType]) -> List[RowType]:
        payload = await self._request(
            "GET", READ_PATH, f"fetch_{sheet}", vendor,
            params={"email": vendor, "sheet": sheet},
        )
        rows = payload.get("data") or []
        parsed: List[RowType] = []
        skipped = 0
        for raw in rows:
            if not isinstance(raw, dict):
                skipped += 1
                continue
            try:
                parsed.append(row_type.model_validate(raw))
            except PydanticValidationError as e:
                skipped += 1
                logger.warning(f"Skipping malformed {sheet} row for {vendor}: {e.errors()[0]['msg']}")
        if skipped:
            logger.warning(f"Skipped {skipped} of {len(rows)} rows from sheet {sheet!r}")
        return parsed

    async def fetch_clients(self, vendor: str) -> List[ClientRecord]:
        return await self._fetch_sheet(vendor, Sheet.CLIENTS, ClientRecord)

    async def fetch_visit_history(self, vendor: str) -> List[VisitHistoryRow]:
        return await self._fetch_sheet(vendor, Sheet.HISTORY, VisitHistoryRow)

    async def fetch_scheduled_visits(self, vendor: str) -> List[ScheduledVisitRow]:
        return await self._fetch_sheet(vendor, Sheet.SCHEDULE, ScheduledVisitRow)

    async def fetch_reschedules(self, vendor: str) -> List[RescheduleRow]:
        return await self._fetch_sheet(vendor, Sheet.RESCHEDULES, RescheduleRow)

    async def fetch_route_performance(self, vendor: str) -> List[RoutePerformanceRow]:
        return await self._fetch_sheet(vendor, Sheet.PERFORMANCE, RoutePerformanceRow)

    async def fetch_route_config(self, vendor: str) -> List[ConfigRow]:
        return await self._fetch_sheet(vendor, Sheet.CONFIG, ConfigRow)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def update_visit_status(self, vendor: str, client_name: str, route_day: str,
                                  status: VisitStatus, visit_date: date,
                                  visit_kind: VisitKind = VisitKind.NORMAL,
                                  notes: Optional[str] = None,
                                  location: Optional[Dict[str, float]] = None) -> Dict[str, Any]:
        """Record a completed or skipped visit. Not safe to submit twice."""
        if visit_kind != VisitKind.NORMAL:
            notes = f"{visit_kind.value}: {notes or ''}"
        body = {
            "action": "update_visit_status",
            "userEmail": vendor,
            "clientName": client_name,
            "routeDay": route_day,
            "visitType": status.value,
            "visitDate": visit_date.isoformat(),
            "location": location,
            "notes": notes or "",
            "cleyVisitType": visit_kind.value,
        }
        return await self._request("POST", UPDATE_PATH, "update_visit_status", vendor, json=body)

    async def batch_reschedule(self, vendor: str, items: Sequence[RescheduleItem]) -> Dict[str, Any]:
        body = {
            "action": "batch_reschedule",
            "userEmail": vendor,
            "reschedules": [item.to_payload() for item in items],
        }
        return await self._request("POST", RESCHEDULE_PATH, "batch_reschedule", vendor, json=body)

    async def deactivate_reschedule(self, vendor: str, client_name: str,
                                    visit_kind: VisitKind) -> Dict[str, Any]:
        body = {
            "action": "deactivate_reschedule",
            "userEmail": vendor,
            "clientName": client_name,
            "visitType": visit_kind.value,
        }
        return await self._request("POST", RESCHEDULE_PATH, "deactivate_reschedule", vendor, json=body)

    async def save_route_summary(self, vendor: str, summary: RouteSummary) -> Dict[str, Any]:
        body = {
            "action": "update_route_summary",
            "userEmail": vendor,
            "routeDay": summary.route_day,
            "fecha": summary.route_date.isoformat(),
            "clientesProgramados": summary.scheduled_count,
            "clientesVisitados": summary.visited_count,
            "ventasTotales": summary.sales_total,
            "tiempoInicio": summary.start_time,
            "tiempoFin": summary.end_time,
            "kilometrosRecorridos": summary.distance_km,
            "combustibleGastado": summary.fuel_cost,
            "observaciones": summary.observations,
        }
        return await self._request("POST", UPDATE_PATH, "update_route_summary", vendor, json=body)
