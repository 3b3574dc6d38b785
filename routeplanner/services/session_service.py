"""
Route session tracking: start time, finish time and the "finished today" flag
for one vendor, persisted per business date so a reload keeps the route state.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session

from routeplanner.config.logging import log_route_event
from routeplanner.core.exceptions import RouteNotStartedError
from routeplanner.repositories.route_session_repo import route_session_repository
from routeplanner.schemas.route import RoutePerformanceRow, RouteSessionView
from routeplanner.utils.date_utils import (
    BusinessCalendar,
    RouteDay,
    parse_flexible_date,
    parse_route_day,
)

logger = logging.getLogger(__name__)


@dataclass
class RouteSession:
    start_time: Optional[str] = None
    finished_at: Optional[str] = None
    finished_today: bool = False
    in_progress: bool = False

    def to_view(self) -> RouteSessionView:
        return RouteSessionView(
            start_time=self.start_time,
            finished_at=self.finished_at,
            finished_today=self.finished_today,
            in_progress=self.in_progress,
        )


class RouteSessionTracker:
    """
    Keeps the in-memory RouteSession for a vendor in step with the local
    store and the backend performance sheet.

    Backend performance rows are authoritative: when one exists for today,
    the selected day and this vendor, the route counts as finished regardless
    of what the local record says.
    """

    def __init__(self, vendor: str, calendar: BusinessCalendar,
                 session_factory: Callable[[], Session],
                 default_start_time: str = "08:00",
                 vendor_aliases: Iterable[str] = ()):
        self.vendor = vendor
        self.calendar = calendar
        self.session_factory = session_factory
        self.default_start_time = default_start_time
        self.vendor_aliases = {a.strip().lower() for a in (vendor, *vendor_aliases) if a}
        self.session = RouteSession()

    # ------------------------------------------------------------------
    # Local store
    # ------------------------------------------------------------------

    def _save(self, selected_day: RouteDay, now: Optional[datetime] = None):
        with self.session_factory() as db:
            route_session_repository.save(db, self.vendor, self.calendar.today(now), {
                "selected_day": selected_day.value,
                "start_time": self.session.start_time,
                "finished": self.session.finished_today,
                "finished_at": self.session.finished_at,
            })

    def _delete(self, business_date: date):
        with self.session_factory() as db:
            route_session_repository.delete_for_day(db, self.vendor, business_date)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _matches_vendor(self, row: RoutePerformanceRow) -> bool:
        return row.vendor.strip().lower() in self.vendor_aliases

    def _finished_row(self, selected_day: RouteDay, rows: Iterable[RoutePerformanceRow],
                      today: date) -> Optional[RoutePerformanceRow]:
        for row in rows:
            if (parse_flexible_date(row.route_date) == today
                    and parse_route_day(row.route_day) == selected_day
                    and self._matches_vendor(row)):
                return row
        return None

    def reconcile(self, selected_day: RouteDay,
                  performance_rows: Iterable[RoutePerformanceRow],
                  now: Optional[datetime] = None) -> RouteSession:
        """Rebuild the session for ``selected_day`` from backend rows and the local record."""
        today = self.calendar.today(now)
        today_day = self.calendar.today_route_day(now)
        self.session = RouteSession()

        row = self._finished_row(selected_day, performance_rows, today)
        if row is not None:
            self.session = RouteSession(
                start_time=row.start_time or None,
                finished_at=row.end_time or None,
                finished_today=True,
            )
            return self.session

        with self.session_factory() as db:
            record = route_session_repository.get_for_day(db, self.vendor, today)
            if record is None:
                return self.session
            stored_label = record.selected_day
            stored_day = parse_route_day(stored_label)
            stored = RouteSession(
                start_time=record.start_time,
                finished_at=record.finished_at,
                finished_today=record.finished,
                in_progress=bool(record.start_time) and not record.finished,
            )

        if stored_day != today_day:
            logger.info(f"Discarding stale route session for {self.vendor} ({stored_label})")
            self._delete(today)
            return self.session

        if selected_day == today_day:
            self.session = stored
        return self.session

    def refresh_progress(self, has_completed_visits: bool):
        """A route with visits already completed is in progress even without a start action."""
        if has_completed_visits and not self.session.start_time and not self.session.finished_today:
            self.session.start_time = self.default_start_time
            self.session.in_progress = True

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, selected_day: RouteDay, now: Optional[datetime] = None) -> str:
        """Open the route (or reopen a finished one so it can be finalized again)."""
        if not self.session.start_time:
            self.session.start_time = self.calendar.time_hhmm(now)
        if self.session.finished_today:
            logger.info(f"Reopening finished route for {self.vendor} on {selected_day.value}")
        self.session.finished_today = False
        self.session.finished_at = None
        self.session.in_progress = True
        self._save(selected_day, now)
        log_route_event("route_started", self.vendor, f"{selected_day.value} at {self.session.start_time}")
        return self.session.start_time

    def on_visit_completed(self, selected_day: RouteDay, now: Optional[datetime] = None):
        if not self.session.in_progress:
            self.start(selected_day, now)

    def validate_finish(self, completed_count: int, route_day: Optional[RouteDay] = None) -> str:
        """Start time to report for a finished route."""
        if not self.session.start_time and completed_count == 0:
            raise RouteNotStartedError(route_day.value if route_day else None)
        return self.session.start_time or self.default_start_time

    def mark_finished(self, selected_day: RouteDay, start_time: str, end_time: str,
                      now: Optional[datetime] = None):
        self.session.start_time = start_time
        self.session.finished_at = end_time
        self.session.finished_today = True
        self.session.in_progress = False
        self._save(selected_day, now)
        log_route_event("route_finished", self.vendor, f"{selected_day.value} {start_time}-{end_time}")
