# api/v1/endpoints/routes.py
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends

from routeplanner.core.dependencies import get_now, get_planner, get_registry
from routeplanner.schemas.route import (
    ActionResponse,
    CommitResponse,
    DayRouteView,
    LoadResponse,
    PostponeRequest,
    RescheduleRequest,
    RouteSessionView,
    RouteSummary,
    VisitActionRequest,
    VisitStatus,
)
from routeplanner.services.day_route_service import DayRoutePlanner, RoutePlannerRegistry

router = APIRouter()


@router.post("/{vendor}/load", response_model=LoadResponse)
async def load_vendor(
    vendor: str,
    registry: RoutePlannerRegistry = Depends(get_registry),
    now: Optional[datetime] = Depends(get_now),
):
    """Reload every sheet for a vendor; failed sheets are reported as warnings"""
    return await registry.get(vendor).load(now)


@router.get("/{vendor}/days/{day}", response_model=DayRouteView)
async def get_day_route(
    day: str,
    planner: DayRoutePlanner = Depends(get_planner),
    now: Optional[datetime] = Depends(get_now),
):
    """Ordered route for a weekday; switching day clears session statuses"""
    planner.select_day(day, now)
    return planner.view(now)


@router.post("/{vendor}/visits/complete", response_model=ActionResponse)
async def complete_visit(
    body: VisitActionRequest,
    planner: DayRoutePlanner = Depends(get_planner),
    now: Optional[datetime] = Depends(get_now),
):
    status = await planner.complete(
        body.occurrence_key, notes=body.notes,
        latitude=body.latitude, longitude=body.longitude, now=now,
    )
    return ActionResponse(occurrence_key=body.occurrence_key, status=status)


@router.post("/{vendor}/visits/skip", response_model=ActionResponse)
async def skip_visit(
    body: VisitActionRequest,
    planner: DayRoutePlanner = Depends(get_planner),
    now: Optional[datetime] = Depends(get_now),
):
    status = await planner.skip(
        body.occurrence_key, notes=body.notes,
        latitude=body.latitude, longitude=body.longitude, now=now,
    )
    return ActionResponse(occurrence_key=body.occurrence_key, status=status)


@router.post("/{vendor}/visits/postpone", response_model=ActionResponse)
async def postpone_visit(
    body: PostponeRequest,
    planner: DayRoutePlanner = Depends(get_planner),
    now: Optional[datetime] = Depends(get_now),
):
    await planner.postpone(body.occurrence_key, body.candidate_day, now)
    return ActionResponse(occurrence_key=body.occurrence_key, status=VisitStatus.POSTPONED)


@router.post("/{vendor}/visits/reschedule", response_model=ActionResponse)
async def reschedule_visit(
    body: RescheduleRequest,
    planner: DayRoutePlanner = Depends(get_planner),
):
    """Move a postponed visit to a target weekday"""
    applied = await planner.reschedule(body.occurrence_key, body.target_day)
    if not applied:
        return ActionResponse(
            occurrence_key=body.occurrence_key,
            status=planner.state.status_of(body.occurrence_key),
            applied=False,
            message="Visit is not postponed",
        )
    return ActionResponse(occurrence_key=body.occurrence_key, status=VisitStatus.PENDING)


@router.post("/{vendor}/reschedules/commit", response_model=CommitResponse)
async def commit_reschedules(planner: DayRoutePlanner = Depends(get_planner)):
    """Save queued temporary reschedules in one batch"""
    return CommitResponse(saved=await planner.commit_reschedules())


@router.post("/{vendor}/session/start", response_model=RouteSessionView)
async def start_route(
    planner: DayRoutePlanner = Depends(get_planner),
    now: Optional[datetime] = Depends(get_now),
):
    planner.start_route(now)
    return planner.tracker.session.to_view()


@router.post("/{vendor}/session/finish", response_model=RouteSummary)
async def finish_route(
    planner: DayRoutePlanner = Depends(get_planner),
    now: Optional[datetime] = Depends(get_now),
):
    """Save the route summary and mark the day finished"""
    return await planner.finish_route(now)
