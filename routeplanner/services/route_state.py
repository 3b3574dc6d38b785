# Route engine state structures
# Everything the day engine knows about a vendor lives in a RouteState that is
# passed explicitly to the roster, visit and reschedule services.

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Dict, List, Optional, Set

from routeplanner.schemas.route import (
    ClientRecord,
    RescheduleItem,
    RoutePerformanceRow,
    VisitKind,
    VisitStatus,
)
from routeplanner.utils.date_utils import RouteDay


def occurrence_key(client_name: str, visit_kind: VisitKind) -> str:
    """Stable key of a visit occurrence; ordinary clients keep their plain name."""
    if visit_kind == VisitKind.NORMAL:
        return client_name
    return f"{client_name} ({visit_kind.value})"


def overlay_key(client_name: str, visit_kind: VisitKind) -> str:
    """Key under which the backend reports an active reschedule."""
    return f"{client_name} ({visit_kind.value})"


@dataclass(frozen=True)
class VisitOccurrence:
    """A client projected onto one visit kind, with its effective weekday."""
    key: str
    client: ClientRecord
    visit_kind: VisitKind
    day: Optional[RouteDay]
    base_day: Optional[RouteDay] = None
    rescheduled: bool = False

    @property
    def client_name(self) -> str:
        return self.client.name

    @property
    def latitude(self) -> float:
        return self.client.latitude

    @property
    def longitude(self) -> float:
        return self.client.longitude

    @property
    def frequency(self) -> int:
        return self.client.frequency

    def on_day(self, day: Optional[RouteDay]) -> "VisitOccurrence":
        return replace(self, day=day)


@dataclass(frozen=True)
class VisitHistoryRecord:
    client_name: str
    last_visit_date: date
    last_visit_week: Optional[int]


@dataclass(frozen=True)
class ScheduledVisitRecord:
    client_name: str
    due_date: date
    status: str
    week_label: str = ""

    @property
    def is_scheduled(self) -> bool:
        return self.status.strip().lower() in ("programado", "scheduled")


@dataclass(frozen=True)
class RescheduleOverlay:
    client_name: str
    original_day: str
    new_day: RouteDay
    visit_kind: VisitKind
    pending: bool = False


@dataclass
class PostponeEntry:
    occurrence: VisitOccurrence
    original_day: Optional[RouteDay]
    postponed_on: date
    persisted_day: Optional[RouteDay] = None

    @property
    def candidate_day(self) -> Optional[RouteDay]:
        return self.occurrence.day


@dataclass
class RouteCostConfig:
    distance_per_visit_km: float = 2.5
    fuel_cost_per_km: float = 1.2
    avg_visit_minutes: int = 15
    max_clients_per_day: int = 20


@dataclass
class RouteState:
    vendor: str
    selected_day: RouteDay
    clients: List[ClientRecord] = field(default_factory=list)
    history: Dict[str, VisitHistoryRecord] = field(default_factory=dict)
    scheduled: Dict[str, ScheduledVisitRecord] = field(default_factory=dict)
    overlays: Dict[str, RescheduleOverlay] = field(default_factory=dict)
    performance: List[RoutePerformanceRow] = field(default_factory=list)
    visit_status: Dict[str, VisitStatus] = field(default_factory=dict)
    postpone_pool: Dict[str, PostponeEntry] = field(default_factory=dict)
    pending_reschedules: List[RescheduleItem] = field(default_factory=list)
    in_flight: Set[str] = field(default_factory=set)
    cost_config: RouteCostConfig = field(default_factory=RouteCostConfig)

    def status_of(self, key: str) -> VisitStatus:
        return self.visit_status.get(key, VisitStatus.PENDING)

    def restore_status(self, key: str, previous: Optional[VisitStatus]):
        if previous is None:
            self.visit_status.pop(key, None)
        else:
            self.visit_status[key] = previous
