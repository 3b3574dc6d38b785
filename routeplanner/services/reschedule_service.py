"""
Postpone and reschedule handling.

Postponed occurrences leave the day's route and wait in a pool until the
operator picks a target weekday. Regular clients are rescheduled immediately
on the backend; dual-cadence clients are queued locally as pending
reschedules and saved together in one batch.
"""

import logging
from datetime import date
from typing import Optional

from routeplanner.config.logging import log_route_event
from routeplanner.core.exceptions import (
    BackendOperationError,
    CandidateDayRequiredError,
    InvalidStatusTransitionError,
    NoPendingReschedulesError,
)
from routeplanner.repositories.route_api import RouteApiClient
from routeplanner.schemas.route import RescheduleItem, VisitKind, VisitStatus
from routeplanner.services.roster_service import fold_reschedules
from routeplanner.services.route_state import (
    PostponeEntry,
    RescheduleOverlay,
    RouteState,
    VisitOccurrence,
)
from routeplanner.utils.date_utils import RouteDay

logger = logging.getLogger(__name__)


def _day_label(day: Optional[RouteDay]) -> str:
    return day.value if day else ""


class RescheduleManager:

    def __init__(self, api: RouteApiClient):
        self.api = api

    async def postpone(self, state: RouteState, occurrence: VisitOccurrence,
                       original_day: Optional[RouteDay], today: date,
                       candidate_day: Optional[RouteDay] = None) -> PostponeEntry:
        """
        Pull an occurrence off its day into the postpone pool. A regular
        client must name a candidate day and is persisted right away.
        """
        key = occurrence.key
        previous_status = state.visit_status.get(key)
        if previous_status in (VisitStatus.COMPLETED, VisitStatus.SKIPPED):
            raise InvalidStatusTransitionError(key, previous_status.value, VisitStatus.POSTPONED.value)
        if occurrence.visit_kind == VisitKind.NORMAL and candidate_day is None:
            raise CandidateDayRequiredError(key)

        entry = PostponeEntry(
            occurrence=occurrence.on_day(candidate_day),
            original_day=original_day,
            postponed_on=today,
        )
        state.postpone_pool[key] = entry
        state.visit_status[key] = VisitStatus.POSTPONED

        if occurrence.visit_kind == VisitKind.NORMAL:
            item = RescheduleItem(
                client_name=occurrence.client_name,
                original_day=_day_label(original_day),
                new_day=candidate_day.value,
                visit_kind=VisitKind.NORMAL,
            )
            try:
                await self.api.batch_reschedule(state.vendor, [item])
            except BackendOperationError:
                state.postpone_pool.pop(key, None)
                state.restore_status(key, previous_status)
                logger.error(f"Postpone of {key!r} reverted after backend failure")
                raise
            entry.persisted_day = candidate_day
            state.overlays[key] = RescheduleOverlay(
                client_name=occurrence.client_name,
                original_day=_day_label(original_day),
                new_day=candidate_day,
                visit_kind=VisitKind.NORMAL,
            )

        logger.info(f"Postponed {key!r} from {_day_label(original_day) or 'unassigned'}")
        return entry

    async def choose_target_day(self, state: RouteState, key: str, target_day: RouteDay) -> bool:
        """
        Move a pooled occurrence to ``target_day``. Returns False (and does
        nothing) when the key is not in the pool.
        """
        entry = state.postpone_pool.get(key)
        if entry is None:
            logger.warning(f"Reschedule requested for {key!r} which is not postponed")
            return False

        occurrence = entry.occurrence
        if occurrence.visit_kind != VisitKind.NORMAL:
            self._queue_pending(state, entry, target_day)
        else:
            await self._persist_regular(state, entry, target_day)
        return True

    def _queue_pending(self, state: RouteState, entry: PostponeEntry, target_day: RouteDay):
        occurrence = entry.occurrence
        item = RescheduleItem(
            client_name=occurrence.client_name,
            original_day=_day_label(entry.original_day),
            new_day=target_day.value,
            visit_kind=occurrence.visit_kind,
        )
        state.pending_reschedules = [
            queued for queued in state.pending_reschedules
            if not (queued.client_name == item.client_name and queued.visit_kind == item.visit_kind)
        ]
        state.pending_reschedules.append(item)
        state.overlays[occurrence.key] = RescheduleOverlay(
            client_name=occurrence.client_name,
            original_day=item.original_day,
            new_day=target_day,
            visit_kind=occurrence.visit_kind,
            pending=True,
        )
        state.postpone_pool.pop(occurrence.key, None)
        state.visit_status.pop(occurrence.key, None)
        logger.info(f"Queued temporary reschedule {occurrence.key!r} -> {target_day.value}")

    async def _persist_regular(self, state: RouteState, entry: PostponeEntry, target_day: RouteDay):
        occurrence = entry.occurrence
        key = occurrence.key
        previous_overlay = state.overlays.get(key)
        previous_status = state.visit_status.get(key)

        state.overlays[key] = RescheduleOverlay(
            client_name=occurrence.client_name,
            original_day=_day_label(entry.original_day),
            new_day=target_day,
            visit_kind=VisitKind.NORMAL,
        )
        state.postpone_pool.pop(key, None)
        state.visit_status.pop(key, None)

        if entry.persisted_day == target_day:
            return

        item = RescheduleItem(
            client_name=occurrence.client_name,
            original_day=_day_label(entry.original_day),
            new_day=target_day.value,
            visit_kind=VisitKind.NORMAL,
        )
        try:
            await self.api.batch_reschedule(state.vendor, [item])
        except BackendOperationError:
            if previous_overlay is None:
                state.overlays.pop(key, None)
            else:
                state.overlays[key] = previous_overlay
            state.postpone_pool[key] = entry
            state.restore_status(key, previous_status)
            logger.error(f"Reschedule of {key!r} to {target_day.value} reverted after backend failure")
            raise
        log_route_event("client_rescheduled", state.vendor, f"{key} -> {target_day.value}")

    async def commit_pending(self, state: RouteState) -> int:
        """Save every queued dual-cadence reschedule in one batch."""
        if not state.pending_reschedules:
            raise NoPendingReschedulesError()

        queued = list(state.pending_reschedules)
        try:
            await self.api.batch_reschedule(state.vendor, queued)
        except BackendOperationError:
            logger.error(f"Batch reschedule of {len(queued)} items failed; queue kept for retry")
            raise

        state.pending_reschedules = []
        try:
            state.overlays = fold_reschedules(await self.api.fetch_reschedules(state.vendor))
        except BackendOperationError as e:
            logger.warning(f"Saved reschedules but could not refresh them: {e}")
            for key, overlay in list(state.overlays.items()):
                if overlay.pending:
                    state.overlays[key] = RescheduleOverlay(
                        client_name=overlay.client_name,
                        original_day=overlay.original_day,
                        new_day=overlay.new_day,
                        visit_kind=overlay.visit_kind,
                    )

        log_route_event("reschedules_committed", state.vendor, f"{len(queued)} temporary reschedules")
        return len(queued)
