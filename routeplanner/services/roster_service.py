"""
Client roster expansion and due-date rules.

Turns the raw roster into visit occurrences (splitting dual-cadence clients
into order and delivery visits and applying active reschedules) and decides
which occurrences are due on a given business day.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from routeplanner.schemas.route import (
    ClientRecord,
    RescheduleRow,
    ScheduledVisitRow,
    VisitHistoryRow,
    VisitKind,
)
from routeplanner.services.route_state import (
    RescheduleOverlay,
    ScheduledVisitRecord,
    VisitHistoryRecord,
    VisitOccurrence,
    occurrence_key,
    overlay_key,
)
from routeplanner.utils.date_utils import (
    RouteDay,
    get_week_number,
    iso_weeks_in_year,
    parse_flexible_date,
    parse_route_day,
)

logger = logging.getLogger(__name__)

COMPLETED_VISIT_TYPE = "completed"
ACTIVE_FLAG = "si"


def is_dual_cadence(client: ClientRecord, dual_cadence_type: str = "CLEY") -> bool:
    """Dual-cadence clients get separate order and delivery visits."""
    return (
        client.client_type.strip().upper() == dual_cadence_type.upper()
        and bool(client.delivery_day)
    )


def _resolve_day(raw_day: Optional[str], client_name: str) -> Optional[RouteDay]:
    day = parse_route_day(raw_day)
    if day is None and raw_day:
        logger.warning(f"Client {client_name!r} has unknown route day {raw_day!r}")
    return day


def overlay_lookup_keys(client_name: str, visit_kind: VisitKind) -> List[str]:
    """Keys an overlay for this visit may be stored under, most specific first."""
    keys = [occurrence_key(client_name, visit_kind)]
    if visit_kind == VisitKind.NORMAL:
        keys.append(overlay_key(client_name, visit_kind))
    return keys


def find_overlay(overlays: Mapping[str, RescheduleOverlay], client_name: str,
                 visit_kind: VisitKind) -> Optional[Tuple[str, RescheduleOverlay]]:
    """The (key, overlay) pair moving this visit, if any."""
    for key in overlay_lookup_keys(client_name, visit_kind):
        overlay = overlays.get(key)
        if overlay is not None and overlay.visit_kind == visit_kind:
            return key, overlay
    return None


def _project(client: ClientRecord, visit_kind: VisitKind, raw_day: Optional[str],
             overlays: Mapping[str, RescheduleOverlay]) -> VisitOccurrence:
    key = occurrence_key(client.name, visit_kind)
    base_day = _resolve_day(raw_day, client.name)
    found = find_overlay(overlays, client.name, visit_kind)
    overlay = found[1] if found else None

    return VisitOccurrence(
        key=key,
        client=client,
        visit_kind=visit_kind,
        day=overlay.new_day if overlay else base_day,
        base_day=base_day,
        rescheduled=overlay is not None,
    )


def expand_roster(clients: Iterable[ClientRecord],
                  overlays: Mapping[str, RescheduleOverlay],
                  dual_cadence_type: str = "CLEY") -> List[VisitOccurrence]:
    """
    Project the roster onto visit occurrences.

    Output order follows the roster, with a dual-cadence client's order visit
    emitted before its delivery visit. The function is pure, so running it
    twice on the same inputs gives the same occurrences.
    """
    occurrences: List[VisitOccurrence] = []
    for client in clients:
        if is_dual_cadence(client, dual_cadence_type):
            occurrences.append(_project(client, VisitKind.ORDER, client.day, overlays))
            occurrences.append(_project(client, VisitKind.DELIVERY, client.delivery_day, overlays))
        else:
            occurrences.append(_project(client, VisitKind.NORMAL, client.day, overlays))
    return occurrences


# =============================================================================
# RECORD FOLDING
# =============================================================================

def _parse_week(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        week = int(float(str(value).strip()))
    except (TypeError, ValueError):
        return None
    return week if 1 <= week <= 53 else None


def fold_visit_history(rows: Iterable[VisitHistoryRow]) -> Dict[str, VisitHistoryRecord]:
    """Most recent completed visit per client name."""
    history: Dict[str, VisitHistoryRecord] = {}
    for row in rows:
        if not row.client_name or row.visit_type.strip().lower() != COMPLETED_VISIT_TYPE:
            continue
        visit_date = parse_flexible_date(row.visit_date)
        if visit_date is None:
            logger.warning(f"Skipping history row for {row.client_name!r}: bad date {row.visit_date!r}")
            continue

        existing = history.get(row.client_name)
        if existing is None or visit_date > existing.last_visit_date:
            history[row.client_name] = VisitHistoryRecord(
                client_name=row.client_name,
                last_visit_date=visit_date,
                last_visit_week=_parse_week(row.week),
            )
    return history


def _schedule_rank(due: date, today: date) -> int:
    if due == today:
        return 0
    return 1 if due < today else 2


def fold_scheduled_visits(rows: Iterable[ScheduledVisitRow],
                          today: date) -> Dict[str, ScheduledVisitRecord]:
    """
    Keep the most relevant scheduled visit per client: due today first, then
    the most recent overdue one, then the nearest upcoming one.
    """
    visits: Dict[str, ScheduledVisitRecord] = {}
    for row in rows:
        if not row.client_name:
            continue
        due = parse_flexible_date(row.next_visit)
        if due is None:
            continue
        record = ScheduledVisitRecord(
            client_name=row.client_name,
            due_date=due,
            status=row.status,
            week_label=f"Semana {row.week_number}" if row.week_number else "",
        )
        if not record.is_scheduled:
            continue

        existing = visits.get(row.client_name)
        if existing is not None:
            rank, existing_rank = _schedule_rank(due, today), _schedule_rank(existing.due_date, today)
            if rank > existing_rank:
                continue
            if rank == existing_rank:
                better = due > existing.due_date if rank == 1 else due < existing.due_date
                if not better:
                    continue

        visits[row.client_name] = record
    return visits


def fold_reschedules(rows: Iterable[RescheduleRow]) -> Dict[str, RescheduleOverlay]:
    """Active reschedules keyed by '<client> (<visit kind>)'."""
    overlays: Dict[str, RescheduleOverlay] = {}
    for row in rows:
        if not row.client_name or row.active.strip().lower() != ACTIVE_FLAG:
            continue
        try:
            visit_kind = VisitKind(row.visit_kind.strip())
        except ValueError:
            logger.warning(f"Skipping reschedule for {row.client_name!r}: unknown visit kind {row.visit_kind!r}")
            continue
        new_day = parse_route_day(row.new_day)
        if new_day is None:
            logger.warning(f"Skipping reschedule for {row.client_name!r}: unknown day {row.new_day!r}")
            continue

        overlays[overlay_key(row.client_name, visit_kind)] = RescheduleOverlay(
            client_name=row.client_name,
            original_day=row.original_day,
            new_day=new_day,
            visit_kind=visit_kind,
        )
    return overlays


# =============================================================================
# DUE-TODAY RULES
# =============================================================================

def weeks_elapsed(last_visit_week: Optional[int], last_visit_date: Optional[date],
                  today: date) -> Optional[int]:
    """
    Calendar weeks between the stored last-visit week and the current week.
    Returns None when the stored week cannot be trusted.
    """
    if last_visit_week is None:
        return None

    current_year, current_week, _ = today.isocalendar()
    last_year = last_visit_date.isocalendar()[0] if last_visit_date else current_year

    elapsed = current_week - last_visit_week
    for year in range(last_year, current_year):
        elapsed += iso_weeks_in_year(year)

    return elapsed if elapsed >= 0 else None


def find_scheduled(occurrence: VisitOccurrence,
                   scheduled: Mapping[str, ScheduledVisitRecord]) -> Optional[ScheduledVisitRecord]:
    return scheduled.get(occurrence.client_name) or scheduled.get(occurrence.key)


def is_due(occurrence: VisitOccurrence,
           history: Mapping[str, VisitHistoryRecord],
           scheduled: Mapping[str, ScheduledVisitRecord],
           today: date) -> bool:
    """Should this occurrence be considered for a visit on ``today``."""
    scheduled_visit = find_scheduled(occurrence, scheduled)
    if scheduled_visit is not None and scheduled_visit.is_scheduled:
        # Due today or overdue
        if scheduled_visit.due_date <= today:
            return True

    record = history.get(occurrence.client_name)
    if record is None:
        return True

    if record.last_visit_date == today:
        return True

    elapsed = weeks_elapsed(record.last_visit_week, record.last_visit_date, today)
    if elapsed is None:
        return True
    return elapsed >= occurrence.frequency


def visit_status_text(occurrence: VisitOccurrence,
                      history: Mapping[str, VisitHistoryRecord],
                      scheduled: Mapping[str, ScheduledVisitRecord],
                      today: date) -> str:
    """Short operator-facing description of where the client stands."""
    scheduled_visit = find_scheduled(occurrence, scheduled)
    if scheduled_visit is not None and scheduled_visit.is_scheduled:
        days = (scheduled_visit.due_date - today).days
        if days == 0:
            return "Programado para hoy"
        if days < 0:
            return f"Programado hace {abs(days)} días"
        return f"Programado en {days} días"

    record = history.get(occurrence.client_name)
    if record is None:
        return "Primera visita"

    days_since = (today - record.last_visit_date).days
    if days_since == 0:
        return "Completado hoy"
    weeks = days_since // 7
    if weeks == 0:
        return f"Visitado hace {days_since} días"
    return f"Visitado hace {weeks} semanas"


def history_record_for(client_name: str, visit_date: date) -> VisitHistoryRecord:
    return VisitHistoryRecord(
        client_name=client_name,
        last_visit_date=visit_date,
        last_visit_week=get_week_number(visit_date),
    )
