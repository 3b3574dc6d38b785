# routeplanner/core/dependencies.py
from datetime import datetime
from typing import Optional

from fastapi import Depends, Path, Request

from routeplanner.services.day_route_service import DayRoutePlanner, RoutePlannerRegistry


def get_registry(request: Request) -> RoutePlannerRegistry:
    """Planner registry created in the application lifespan."""
    return request.app.state.registry


def get_now() -> Optional[datetime]:
    """Reference instant for "today"; None means the real clock."""
    return None


async def get_planner(
    vendor: str = Path(..., min_length=1, description="Vendor email"),
    registry: RoutePlannerRegistry = Depends(get_registry),
    now: Optional[datetime] = Depends(get_now),
) -> DayRoutePlanner:
    """Planner for the vendor in the path, loaded on first use."""
    return await registry.get_loaded(vendor, now)
