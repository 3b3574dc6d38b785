from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VisitKind(str, Enum):
    ORDER = "Pedidos"
    DELIVERY = "Entrega"
    NORMAL = "Normal"


class VisitStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    POSTPONED = "postponed"


class SheetRow(BaseModel):
    """Base for rows read from the spreadsheet API"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


# =============================================================================
# INBOUND ROWS
# =============================================================================

class ClientRecord(SheetRow):
    name: str = Field(..., alias="Nombre", min_length=1)
    latitude: float = Field(0.0, alias="Latitude")
    longitude: float = Field(0.0, alias="Longitud")
    day: str = Field("", alias="Dia")
    frequency: int = Field(1, alias="Frecuencia")
    client_type: str = Field("", alias="Tipo_Cliente")
    vendor: str = Field("", alias="Vendedor")
    delivery_day: Optional[str] = Field(None, alias="Entrega")

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def coerce_coordinate(cls, v):
        try:
            return float(v)
        except (TypeError, ValueError):
            return 0.0

    @field_validator("frequency", mode="before")
    @classmethod
    def coerce_frequency(cls, v):
        try:
            value = int(float(v))
        except (TypeError, ValueError):
            return 1
        return value if value > 0 else 1

    @field_validator("day", "client_type", "vendor", mode="before")
    @classmethod
    def blank_as_empty(cls, v):
        return "" if v is None else str(v)

    @field_validator("delivery_day", mode="before")
    @classmethod
    def blank_as_none(cls, v):
        if v is None or not str(v).strip():
            return None
        return str(v)


class VisitHistoryRow(SheetRow):
    client_name: str = Field("", alias="cliente")
    visit_date: str = Field("", alias="fecha")
    visit_type: str = Field("", alias="tipo_visita")
    week: Optional[str] = Field(None, alias="semana")

    @field_validator("client_name", "visit_date", "visit_type", mode="before")
    @classmethod
    def blank_as_empty(cls, v):
        return "" if v is None else str(v)

    @field_validator("week", mode="before")
    @classmethod
    def week_as_text(cls, v):
        return None if v is None else str(v)


class ScheduledVisitRow(SheetRow):
    client_name: str = Field("", alias="cliente_nombre")
    next_visit: str = Field("", alias="proxima_visita_programada")
    status: str = Field("", alias="estado")
    week_number: Optional[str] = Field(None, alias="semana_numero")

    @field_validator("client_name", "next_visit", "status", mode="before")
    @classmethod
    def blank_as_empty(cls, v):
        return "" if v is None else str(v)

    @field_validator("week_number", mode="before")
    @classmethod
    def week_as_text(cls, v):
        return None if v is None else str(v)


class RescheduleRow(SheetRow):
    client_name: str = Field("", alias="cliente_original")
    visit_kind: str = Field("", alias="tipo_visita")
    original_day: str = Field("", alias="dia_original")
    new_day: str = Field("", alias="dia_nuevo")
    active: str = Field("", alias="activo")

    @field_validator("*", mode="before")
    @classmethod
    def blank_as_empty(cls, v):
        return "" if v is None else str(v)


class RoutePerformanceRow(SheetRow):
    route_date: str = Field("", alias="fecha")
    route_day: str = Field("", alias="dia_ruta")
    vendor: str = Field("", alias="vendedor")
    start_time: Optional[str] = Field(None, alias="tiempo_inicio")
    end_time: Optional[str] = Field(None, alias="tiempo_fin")

    @field_validator("route_date", "route_day", "vendor", mode="before")
    @classmethod
    def blank_as_empty(cls, v):
        return "" if v is None else str(v)


class ConfigRow(SheetRow):
    key: str = Field("", alias="clave")
    value: str = Field("", alias="valor")
    active: str = Field("", alias="activo")

    @field_validator("*", mode="before")
    @classmethod
    def blank_as_empty(cls, v):
        return "" if v is None else str(v)


# =============================================================================
# OUTBOUND PAYLOADS
# =============================================================================

class RescheduleItem(BaseModel):
    client_name: str
    original_day: str
    new_day: str
    visit_kind: VisitKind

    def to_payload(self) -> dict:
        return {
            "clientName": self.client_name,
            "originalDay": self.original_day,
            "newDay": self.new_day,
            "visitType": self.visit_kind.value,
        }


class RouteSummary(BaseModel):
    route_day: str
    route_date: date
    scheduled_count: int = Field(..., ge=0)
    visited_count: int = Field(..., ge=0)
    start_time: str
    end_time: str
    distance_km: int = Field(..., ge=0)
    fuel_cost: int = Field(..., ge=0)
    observations: str = ""
    sales_total: float = 0


# =============================================================================
# API SCHEMAS
# =============================================================================

class VisitActionRequest(BaseModel):
    occurrence_key: str = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=500)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class PostponeRequest(BaseModel):
    occurrence_key: str = Field(..., min_length=1)
    candidate_day: Optional[str] = None


class RescheduleRequest(BaseModel):
    occurrence_key: str = Field(..., min_length=1)
    target_day: str = Field(..., min_length=1)


class OccurrenceView(BaseModel):
    key: str
    client_name: str
    visit_kind: VisitKind
    day: Optional[str]
    latitude: float
    longitude: float
    frequency: int
    client_type: str
    status: VisitStatus
    status_text: str
    rescheduled: bool = False
    maps_url: str


class PostponeEntryView(BaseModel):
    key: str
    client_name: str
    original_day: Optional[str]
    candidate_day: Optional[str]
    postponed_on: date


class PendingRescheduleView(BaseModel):
    client_name: str
    original_day: str
    new_day: str
    visit_kind: VisitKind


class RouteSessionView(BaseModel):
    start_time: Optional[str] = None
    finished_at: Optional[str] = None
    finished_today: bool = False
    in_progress: bool = False


class DayRouteView(BaseModel):
    vendor: str
    day: str
    route_date: date
    is_today: bool
    period_number: int
    week_in_period: int
    pending: List[OccurrenceView]
    completed: List[OccurrenceView]
    postponed: List[PostponeEntryView]
    pending_reschedules: List[PendingRescheduleView]
    scheduled_count: int
    completed_count: int
    pending_count: int
    total_distance_km: float
    estimated_minutes: int = 0
    route_url: Optional[str] = None
    session: RouteSessionView


class LoadResponse(BaseModel):
    vendor: str
    clients: int
    warnings: List[str] = []


class CommitResponse(BaseModel):
    saved: int


class ActionResponse(BaseModel):
    occurrence_key: str
    status: VisitStatus
    applied: bool = True
    message: Optional[str] = None
