"""
Geospatial utility functions for the route planner.
Handles great-circle distances and map links for client locations.
"""

import math
from typing import Optional, Sequence, Tuple
from urllib.parse import urlencode

import numpy as np

EARTH_RADIUS_KM = 6371.0

MAPS_DIRECTIONS_URL = "https://www.google.com/maps/dir/"


class GeoUtils:
    """Great-circle helpers used by the route optimizer."""

    @staticmethod
    def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """
        Calculate the great circle distance between two points using Haversine formula.
        Returns distance in kilometers.
        """
        lat1, lon1, lat2, lon2 = map(math.radians, (lat1, lon1, lat2, lon2))

        dlat = lat2 - lat1
        dlon = lon2 - lon1

        a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

        return EARTH_RADIUS_KM * c

    @staticmethod
    def haversine_to_many(lat: float, lon: float,
                          lats: Sequence[float], lons: Sequence[float]) -> np.ndarray:
        """Vectorised haversine from one point to many; returns kilometers."""
        lat1 = np.radians(lat)
        lon1 = np.radians(lon)
        lat2 = np.radians(np.asarray(lats, dtype=float))
        lon2 = np.radians(np.asarray(lons, dtype=float))

        a = np.sin((lat2 - lat1) / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2
        return EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))

    @staticmethod
    def calculate_route_distance(points: Sequence[Tuple[float, float]],
                                 start: Optional[Tuple[float, float]] = None) -> float:
        """
        Total distance of visiting ``points`` in order, starting at ``start``
        when given. Returns distance in kilometers.
        """
        if not points:
            return 0.0

        total = 0.0
        current = start if start is not None else points[0]
        for point in points:
            total += GeoUtils.haversine_distance(current[0], current[1], point[0], point[1])
            current = point
        return total

    @staticmethod
    def directions_url(destination: Tuple[float, float],
                       origin: Optional[Tuple[float, float]] = None,
                       waypoints: Sequence[Tuple[float, float]] = ()) -> str:
        """Google Maps directions link."""
        params = {"api": "1"}
        if origin is not None:
            params["origin"] = f"{origin[0]},{origin[1]}"
        params["destination"] = f"{destination[0]},{destination[1]}"
        if waypoints:
            params["waypoints"] = "|".join(f"{lat},{lon}" for lat, lon in waypoints)
        return f"{MAPS_DIRECTIONS_URL}?{urlencode(params, safe=',|')}"
