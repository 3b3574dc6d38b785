"""
Day route planner.

One DayRoutePlanner per vendor holds the loaded RouteState and wires the
roster rules, optimizer, visit state machine, reschedule manager and session
tracker into the operations exposed by the API.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from routeplanner.config.logging import log_performance, log_route_event
from routeplanner.config.settings import Settings
from routeplanner.core.exceptions import (
    BackendOperationError,
    ConflictError,
    NotFoundError,
    UnknownWeekdayError,
)
from routeplanner.repositories.route_api import RouteApiClient
from routeplanner.schemas.route import (
    DayRouteView,
    LoadResponse,
    OccurrenceView,
    PendingRescheduleView,
    PostponeEntryView,
    RouteSummary,
    VisitStatus,
)
from routeplanner.services.roster_service import (
    expand_roster,
    fold_reschedules,
    fold_scheduled_visits,
    fold_visit_history,
    is_due,
    visit_status_text,
)
from routeplanner.services.reschedule_service import RescheduleManager
from routeplanner.services.route_service import RouteService, parse_route_config
from routeplanner.services.route_state import (
    PostponeEntry,
    RouteCostConfig,
    RouteState,
    VisitOccurrence,
)
from routeplanner.services.session_service import RouteSessionTracker
from routeplanner.services.visit_service import VisitStateMachine
from routeplanner.utils.date_utils import BusinessCalendar, RouteDay, parse_route_day

logger = logging.getLogger(__name__)


@dataclass
class DayPlan:
    day: RouteDay
    route_date: date
    considered: List[VisitOccurrence]
    pending: List[VisitOccurrence]
    completed: List[VisitOccurrence]


def resolve_day(value) -> RouteDay:
    day = parse_route_day(value)
    if day is None:
        raise UnknownWeekdayError(value)
    return day


class DayRoutePlanner:
    """Route engine for a single vendor."""

    def __init__(self, vendor: str, api: RouteApiClient, calendar: BusinessCalendar,
                 session_factory: Callable[[], Session], settings: Settings):
        self.vendor = vendor
        self.api = api
        self.calendar = calendar
        self.settings = settings
        self.dual_cadence_type = settings.DUAL_CADENCE_CLIENT_TYPE
        self.default_cost_config = RouteCostConfig(
            distance_per_visit_km=settings.DISTANCE_PER_VISIT_KM,
            fuel_cost_per_km=settings.FUEL_COST_PER_KM,
            avg_visit_minutes=settings.AVG_VISIT_MINUTES,
            max_clients_per_day=settings.MAX_CLIENTS_PER_DAY,
        )

        self.state = RouteState(vendor=vendor, selected_day=calendar.today_route_day(),
                                cost_config=self.default_cost_config)
        self.route_service = RouteService(
            depot=(settings.DEPOT_LATITUDE, settings.DEPOT_LONGITUDE),
            cost_config=self.default_cost_config,
        )
        label = settings.VENDOR_LABELS.get(vendor)
        self.tracker = RouteSessionTracker(
            vendor, calendar, session_factory,
            default_start_time=settings.DEFAULT_ROUTE_START_TIME,
            vendor_aliases=[label] if label else [],
        )
        self.visits = VisitStateMachine(api, calendar, self.tracker)
        self.reschedules = RescheduleManager(api)
        self.loaded = False

    # ------------------------------------------------------------------
    # Loading and day selection
    # ------------------------------------------------------------------

    async def load(self, now: Optional[datetime] = None) -> LoadResponse:
        """Fetch every sheet concurrently and rebuild the state once all have settled."""
        vendor = self.vendor
        sources = {
            "clientes": self.api.fetch_clients(vendor),
            "metricas": self.api.fetch_visit_history(vendor),
            "programacion": self.api.fetch_scheduled_visits(vendor),
            "reprogramadas": self.api.fetch_reschedules(vendor),
            "performance": self.api.fetch_route_performance(vendor),
            "configuracion": self.api.fetch_route_config(vendor),
        }
        results = await asyncio.gather(*sources.values(), return_exceptions=True)

        data: Dict[str, list] = {}
        warnings: List[str] = []
        for name, result in zip(sources, results):
            if isinstance(result, BackendOperationError):
                logger.error(f"Loading {name} for {vendor} failed: {result.detail}")
                warnings.append(f"{name}: {result.detail}")
                data[name] = []
            elif isinstance(result, BaseException):
                raise result
            else:
                data[name] = result

        today = self.calendar.today(now)
        cost_config = parse_route_config(data["configuracion"], self.default_cost_config)
        self.state = RouteState(
            vendor=vendor,
            selected_day=self.state.selected_day if self.loaded else self.calendar.today_route_day(now),
            clients=data["clientes"],
            history=fold_visit_history(data["metricas"]),
            scheduled=fold_scheduled_visits(data["programacion"], today),
            overlays=fold_reschedules(data["reprogramadas"]),
            performance=data["performance"],
            cost_config=cost_config,
        )
        self.route_service.cost_config = cost_config
        self.loaded = True
        self._reconcile_session(now)

        logger.info(f"Loaded {len(self.state.clients)} clients for {vendor}")
        return LoadResponse(vendor=vendor, clients=len(self.state.clients), warnings=warnings)

    def select_day(self, day, now: Optional[datetime] = None) -> RouteDay:
        """Switch the viewed weekday; session-local visit statuses are discarded."""
        route_day = resolve_day(day)
        if route_day != self.state.selected_day:
            self.state.selected_day = route_day
            self.state.visit_status.clear()
            self._reconcile_session(now)
        return route_day

    def _reconcile_session(self, now: Optional[datetime]):
        self.tracker.reconcile(self.state.selected_day, self.state.performance, now)
        today = self.calendar.today(now)
        viewing_today = self.calendar.selected_day_date(self.state.selected_day, now) == today
        completed_today = viewing_today and any(
            record.last_visit_date == today for record in self.state.history.values()
        )
        self.tracker.refresh_progress(completed_today)

    # ------------------------------------------------------------------
    # Day plan
    # ------------------------------------------------------------------

    def occurrences(self) -> List[VisitOccurrence]:
        return expand_roster(self.state.clients, self.state.overlays, self.dual_cadence_type)

    def find_occurrence(self, key: str) -> VisitOccurrence:
        entry = self.state.postpone_pool.get(key)
        if entry is not None:
            return entry.occurrence
        for occurrence in self.occurrences():
            if occurrence.key == key:
                return occurrence
        raise NotFoundError("Visit occurrence", key)

    def _visited_on(self, occurrence: VisitOccurrence, route_date: date) -> bool:
        record = self.state.history.get(occurrence.client_name)
        return record is not None and record.last_visit_date == route_date

    @log_performance("routeplanner")
    def day_plan(self, now: Optional[datetime] = None) -> DayPlan:
        state = self.state
        day = state.selected_day
        route_date = self.calendar.selected_day_date(day, now)

        for_day: Dict[str, VisitOccurrence] = {
            o.key: o for o in self.occurrences() if o.day == day
        }
        pooled = {
            key: entry.occurrence for key, entry in state.postpone_pool.items()
            if entry.candidate_day == day
        }
        for_day.update(pooled)

        considered = [
            o for key, o in for_day.items()
            if key in pooled or is_due(o, state.history, state.scheduled, route_date)
        ]

        pending, completed = [], []
        for o in considered:
            status = state.status_of(o.key)
            if self._visited_on(o, route_date) or status == VisitStatus.COMPLETED:
                completed.append(o)
                continue
            closed = (VisitStatus.SKIPPED,) if o.key in pooled else (VisitStatus.SKIPPED, VisitStatus.POSTPONED)
            if status not in closed:
                pending.append(o)

        if len(pending) > state.cost_config.max_clients_per_day:
            logger.warning(
                f"{self.vendor} has {len(pending)} pending visits on {day.value}, "
                f"above the daily maximum of {state.cost_config.max_clients_per_day}"
            )

        return DayPlan(
            day=day,
            route_date=route_date,
            considered=considered,
            pending=self.route_service.optimize(pending),
            completed=completed,
        )

    def _occurrence_view(self, occurrence: VisitOccurrence, today: date) -> OccurrenceView:
        state = self.state
        return OccurrenceView(
            key=occurrence.key,
            client_name=occurrence.client_name,
            visit_kind=occurrence.visit_kind,
            day=occurrence.day.value if occurrence.day else None,
            latitude=occurrence.latitude,
            longitude=occurrence.longitude,
            frequency=occurrence.frequency,
            client_type=occurrence.client.client_type,
            status=state.status_of(occurrence.key),
            status_text=visit_status_text(occurrence, state.history, state.scheduled, today),
            rescheduled=occurrence.rescheduled,
            maps_url=self.route_service.client_url(occurrence),
        )

    @staticmethod
    def _postpone_view(key: str, entry: PostponeEntry) -> PostponeEntryView:
        return PostponeEntryView(
            key=key,
            client_name=entry.occurrence.client_name,
            original_day=entry.original_day.value if entry.original_day else None,
            candidate_day=entry.candidate_day.value if entry.candidate_day else None,
            postponed_on=entry.postponed_on,
        )

    def view(self, now: Optional[datetime] = None) -> DayRouteView:
        plan = self.day_plan(now)
        today = self.calendar.today(now)
        period = self.calendar.period_info(plan.route_date)
        metrics = self.route_service.calculate_metrics(plan.pending)

        return DayRouteView(
            vendor=self.vendor,
            day=plan.day.value,
            route_date=plan.route_date,
            is_today=plan.route_date == today,
            period_number=period.period_number,
            week_in_period=period.week_in_period,
            pending=[self._occurrence_view(o, today) for o in plan.pending],
            completed=[self._occurrence_view(o, today) for o in plan.completed],
            postponed=[self._postpone_view(k, e) for k, e in self.state.postpone_pool.items()],
            pending_reschedules=[
                PendingRescheduleView(**item.model_dump()) for item in self.state.pending_reschedules
            ],
            scheduled_count=len(plan.considered),
            completed_count=len(plan.completed),
            pending_count=len(plan.pending),
            total_distance_km=metrics.total_distance_km,
            estimated_minutes=metrics.estimated_minutes,
            route_url=self.route_service.route_url(plan.pending),
            session=self.tracker.session.to_view(),
        )

    # ------------------------------------------------------------------
    # Visit actions
    # ------------------------------------------------------------------

    async def complete(self, key: str, notes: Optional[str] = None,
                       latitude: Optional[float] = None, longitude: Optional[float] = None,
                       now: Optional[datetime] = None) -> VisitStatus:
        occurrence = self.find_occurrence(key)
        return await self.visits.complete(
            self.state, occurrence, notes=notes,
            location=_location(latitude, longitude), now=now,
        )

    async def skip(self, key: str, notes: Optional[str] = None,
                   latitude: Optional[float] = None, longitude: Optional[float] = None,
                   now: Optional[datetime] = None) -> VisitStatus:
        occurrence = self.find_occurrence(key)
        return await self.visits.skip(
            self.state, occurrence, notes=notes,
            location=_location(latitude, longitude), now=now,
        )

    async def postpone(self, key: str, candidate_day=None,
                       now: Optional[datetime] = None) -> PostponeEntry:
        if key in self.state.postpone_pool:
            raise ConflictError(f"{key} is already postponed", "ALREADY_POSTPONED")
        occurrence = self.find_occurrence(key)
        candidate = resolve_day(candidate_day) if candidate_day else None
        return await self.reschedules.postpone(
            self.state, occurrence,
            original_day=occurrence.day or self.state.selected_day,
            today=self.calendar.today(now),
            candidate_day=candidate,
        )

    async def reschedule(self, key: str, target_day) -> bool:
        return await self.reschedules.choose_target_day(self.state, key, resolve_day(target_day))

    async def commit_reschedules(self) -> int:
        return await self.reschedules.commit_pending(self.state)

    # ------------------------------------------------------------------
    # Route session
    # ------------------------------------------------------------------

    def start_route(self, now: Optional[datetime] = None) -> str:
        return self.tracker.start(self.state.selected_day, now)

    async def finish_route(self, now: Optional[datetime] = None) -> RouteSummary:
        plan = self.day_plan(now)
        start_time = self.tracker.validate_finish(len(plan.completed), plan.day)
        end_time = self.calendar.time_hhmm(now)

        distance_km, fuel_cost = self.route_service.estimate_finished_route(
            self.route_service.optimize(plan.completed)
        )
        visited = [o.key for o in plan.completed]
        visited_keys = set(visited)
        not_visited = [o.key for o in plan.considered if o.key not in visited_keys]
        observations = f"Visitados: {', '.join(visited)}"
        if not_visited:
            observations += f". No visitados: {', '.join(not_visited)}"

        summary = RouteSummary(
            route_day=plan.day.value,
            route_date=plan.route_date,
            scheduled_count=len(plan.considered),
            visited_count=len(plan.completed),
            start_time=start_time,
            end_time=end_time,
            distance_km=distance_km,
            fuel_cost=fuel_cost,
            observations=observations[:self.settings.OBSERVATIONS_MAX_LENGTH],
        )
        await self.api.save_route_summary(self.vendor, summary)

        self.tracker.mark_finished(plan.day, start_time, end_time, now)
        self.state.visit_status.clear()
        try:
            self.state.history = fold_visit_history(await self.api.fetch_visit_history(self.vendor))
        except BackendOperationError as e:
            logger.warning(f"Route saved but visit history could not be refreshed: {e}")

        log_route_event(
            "route_summary_saved", self.vendor,
            f"{summary.visited_count}/{summary.scheduled_count} visited, {summary.distance_km} km",
        )
        return summary


def _location(latitude: Optional[float], longitude: Optional[float]) -> Optional[Dict[str, float]]:
    if latitude is None or longitude is None:
        return None
    return {"lat": latitude, "lng": longitude}


class RoutePlannerRegistry:
    """Keeps one planner per vendor for the lifetime of the application."""

    def __init__(self, api: RouteApiClient, calendar: BusinessCalendar,
                 session_factory: Callable[[], Session], settings: Settings):
        self.api = api
        self.calendar = calendar
        self.session_factory = session_factory
        self.settings = settings
        self._planners: Dict[str, DayRoutePlanner] = {}

    def get(self, vendor: str) -> DayRoutePlanner:
        key = vendor.strip().lower()
        planner = self._planners.get(key)
        if planner is None:
            planner = DayRoutePlanner(key, self.api, self.calendar, self.session_factory, self.settings)
            self._planners[key] = planner
        return planner

    async def get_loaded(self, vendor: str, now: Optional[datetime] = None) -> DayRoutePlanner:
        planner = self.get(vendor)
        if not planner.loaded:
            await planner.load(now)
        return planner

    def clear(self):
        self._planners.clear()

    async def aclose(self):
        self.clear()
        await self.api.aclose()
