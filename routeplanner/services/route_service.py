# Route Optimization Service for the daily visit route
# Orders pending visits with a nearest-neighbor heuristic and prices the route


import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from routeplanner.schemas.route import ConfigRow
from routeplanner.services.route_state import RouteCostConfig, VisitOccurrence
from routeplanner.utils.geo_utils import GeoUtils

logger = logging.getLogger(__name__)

# Remote configuration keys mapped onto RouteCostConfig attributes
CONFIG_KEYS = {
    "distancia_por_visita": ("distance_per_visit_km", float),
    "costo_combustible_km": ("fuel_cost_per_km", float),
    "tiempo_promedio_visita": ("avg_visit_minutes", int),
    "maximo_clientes_dia": ("max_clients_per_day", int),
}


@dataclass
class RouteMetrics:
    """Distance and cost figures for a sequence of visits"""
    stops: int
    total_distance_km: float
    estimated_minutes: int
    estimated_fuel_cost: float


class RouteService:
    """Nearest-neighbor route construction from a fixed depot"""

    def __init__(self, depot: Tuple[float, float],
                 cost_config: Optional[RouteCostConfig] = None):
        self.depot = depot
        self.cost_config = cost_config or RouteCostConfig()
        self.geo_utils = GeoUtils()

    def optimize(self, occurrences: Sequence[VisitOccurrence]) -> List[VisitOccurrence]:
        """
        Order occurrences by repeatedly visiting the closest remaining one,
        starting at the depot. Ties keep input order.
        """
        unvisited = list(occurrences)
        if len(unvisited) < 2:
            return unvisited

        optimized_route = []
        current_lat, current_lon = self.depot

        while unvisited:
            distances = self.geo_utils.haversine_to_many(
                current_lat, current_lon,
                [o.latitude for o in unvisited],
                [o.longitude for o in unvisited],
            )
            # argmin returns the first minimum, so earlier entries win ties
            nearest = unvisited.pop(int(np.argmin(distances)))
            optimized_route.append(nearest)
            current_lat, current_lon = nearest.latitude, nearest.longitude

        return optimized_route

    def total_distance(self, occurrences: Sequence[VisitOccurrence]) -> float:
        """Sum of consecutive legs, including depot to first stop"""
        points = [(o.latitude, o.longitude) for o in occurrences]
        return self.geo_utils.calculate_route_distance(points, start=self.depot)

    def calculate_metrics(self, occurrences: Sequence[VisitOccurrence]) -> RouteMetrics:
        distance = self.total_distance(occurrences)
        return RouteMetrics(
            stops=len(occurrences),
            total_distance_km=round(distance, 2),
            estimated_minutes=len(occurrences) * self.cost_config.avg_visit_minutes,
            estimated_fuel_cost=round(distance * self.cost_config.fuel_cost_per_km, 2),
        )

    def estimate_finished_route(self, completed: Sequence[VisitOccurrence]) -> Tuple[int, int]:
        """
        Distance (km) and fuel cost of a finished route, both rounded.

        Falls back to visits times the configured distance per visit when the
        completed stops carry no usable coordinates.
        """
        located = [o for o in completed if o.latitude or o.longitude]
        distance = self.total_distance(located) if located else 0.0
        if distance <= 0:
            distance = len(completed) * self.cost_config.distance_per_visit_km
        return round(distance), round(distance * self.cost_config.fuel_cost_per_km)

    def client_url(self, occurrence: VisitOccurrence) -> str:
        return self.geo_utils.directions_url((occurrence.latitude, occurrence.longitude))

    def route_url(self, occurrences: Sequence[VisitOccurrence]) -> Optional[str]:
        """Directions link for the whole route: depot, waypoints, last stop"""
        if not occurrences:
            return None
        points = [(o.latitude, o.longitude) for o in occurrences]
        return self.geo_utils.directions_url(
            destination=points[-1],
            origin=self.depot,
            waypoints=points[:-1],
        )


def parse_route_config(rows: Iterable[ConfigRow],
                       defaults: Optional[RouteCostConfig] = None) -> RouteCostConfig:
    """Apply active remote configuration rows on top of the defaults"""
    config = RouteCostConfig(**vars(defaults)) if defaults else RouteCostConfig()
    applied: Dict[str, object] = {}

    for row in rows:
        if row.active.strip().lower() != "si":
            continue
        target = CONFIG_KEYS.get(row.key.strip().lower())
        if target is None:
            continue
        attr, cast = target
        try:
            value = cast(float(row.value))
        except (TypeError, ValueError):
            logger.warning(f"Ignoring route config {row.key}={row.value!r}")
            continue
        setattr(config, attr, value)
        applied[attr] = value

    if applied:
        logger.debug(f"Route configuration overrides: {applied}")
    return config
