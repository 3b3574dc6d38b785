"""
Visit state machine.

Each occurrence starts (implicitly) pending and can move to completed,
skipped or postponed. Completing and skipping are optimistic: the status
changes locally first, the backend is told, and the change is rolled back if
the backend call fails.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from routeplanner.core.exceptions import (
    BackendOperationError,
    InvalidStatusTransitionError,
    VisitTransitionInProgressError,
)
from routeplanner.repositories.route_api import RouteApiClient
from routeplanner.schemas.route import VisitStatus
from routeplanner.services.roster_service import find_overlay, history_record_for
from routeplanner.services.route_state import RouteState, VisitOccurrence
from routeplanner.services.session_service import RouteSessionTracker
from routeplanner.utils.date_utils import BusinessCalendar, parse_flexible_date

logger = logging.getLogger(__name__)

# Statuses that end an occurrence's lifecycle for the current day
TERMINAL_STATUSES = (VisitStatus.COMPLETED, VisitStatus.SKIPPED)


class VisitStateMachine:

    def __init__(self, api: RouteApiClient, calendar: BusinessCalendar,
                 tracker: RouteSessionTracker):
        self.api = api
        self.calendar = calendar
        self.tracker = tracker

    def _guard(self, state: RouteState, occurrence: VisitOccurrence, new_status: VisitStatus):
        if occurrence.key in state.in_flight:
            raise VisitTransitionInProgressError(occurrence.key)
        current = state.status_of(occurrence.key)
        if current in TERMINAL_STATUSES:
            raise InvalidStatusTransitionError(occurrence.key, current.value, new_status.value)

    async def _transition(self, state: RouteState, occurrence: VisitOccurrence,
                          new_status: VisitStatus, notes: Optional[str],
                          location: Optional[Dict[str, float]],
                          now: Optional[datetime]) -> Dict:
        key = occurrence.key
        previous = state.visit_status.get(key)
        route_day = occurrence.day or state.selected_day
        visit_date = self.calendar.selected_day_date(state.selected_day, now)

        state.in_flight.add(key)
        state.visit_status[key] = new_status
        try:
            response = await self.api.update_visit_status(
                state.vendor,
                client_name=occurrence.client_name,
                route_day=route_day.value,
                status=new_status,
                visit_date=visit_date,
                visit_kind=occurrence.visit_kind,
                notes=notes,
                location=location,
            )
        except BackendOperationError:
            state.restore_status(key, previous)
            logger.error(f"Reverted {new_status.value} for {key!r} after backend failure")
            raise
        finally:
            state.in_flight.discard(key)
        return response

    async def complete(self, state: RouteState, occurrence: VisitOccurrence,
                       notes: Optional[str] = None,
                       location: Optional[Dict[str, float]] = None,
                       now: Optional[datetime] = None) -> VisitStatus:
        self._guard(state, occurrence, VisitStatus.COMPLETED)
        self.tracker.on_visit_completed(state.selected_day, now)

        response = await self._transition(state, occurrence, VisitStatus.COMPLETED, notes, location, now)

        data = response.get("data") if isinstance(response.get("data"), dict) else {}
        visit_date = (parse_flexible_date(data.get("fecha"))
                      or self.calendar.selected_day_date(state.selected_day, now))
        state.history[occurrence.client_name] = history_record_for(occurrence.client_name, visit_date)

        await self._release_overlay(state, occurrence)

        logger.info(f"Visit completed: {occurrence.key} ({state.vendor})")
        return VisitStatus.COMPLETED

    async def skip(self, state: RouteState, occurrence: VisitOccurrence,
                   notes: Optional[str] = None,
                   location: Optional[Dict[str, float]] = None,
                   now: Optional[datetime] = None) -> VisitStatus:
        self._guard(state, occurrence, VisitStatus.SKIPPED)
        await self._transition(state, occurrence, VisitStatus.SKIPPED, notes, location, now)
        logger.info(f"Visit skipped: {occurrence.key} ({state.vendor})")
        return VisitStatus.SKIPPED

    async def _release_overlay(self, state: RouteState, occurrence: VisitOccurrence):
        """
        Reschedules only last until the visit happens. A committed overlay is
        deactivated server-side once; a queued one is dropped.
        """
        found = find_overlay(state.overlays, occurrence.client_name, occurrence.visit_kind)
        if found is None:
            return
        key, overlay = found

        if overlay.pending:
            state.pending_reschedules = [
                item for item in state.pending_reschedules
                if not (item.client_name == occurrence.client_name
                        and item.visit_kind == occurrence.visit_kind)
            ]
            state.overlays.pop(key, None)
            return

        try:
            await self.api.deactivate_reschedule(state.vendor, occurrence.client_name, occurrence.visit_kind)
        except BackendOperationError as e:
            # The visit itself is recorded; the overlay stays until the next reload
            logger.error(f"Could not deactivate reschedule for {occurrence.key!r}: {e}")
            return
        state.overlays.pop(key, None)
