"""Great-circle distance helpers used by every threat factor.

Distances are in meters on a spherical Earth of radius 6,371 km. The
point-to-segment projection is done in degree space (adequate at city
scale) and converted back to meters with :func:`distance`.
"""

from __future__ import annotations

import math
from typing import Iterable

from src.models.ride import Location, Route
from src.services.safety.constants import EARTH_RADIUS_METERS


def distance(a: Location, b: Location) -> float:
    """Haversine distance between two samples, in meters."""
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    delta_lat = math.radians(b.lat - a.lat)
    delta_lng = math.radians(b.lng - a.lng)

    h = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(delta_lng / 2) ** 2
    )
    # Rounding can push h a hair past 1 for antipodal points.
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distance_to_segment(point: Location, start: Location, end: Location) -> float:
    """Distance from *point* to the segment *start*-*end*, in meters.

    A zero-length segment degrades to the distance to *start*.
    """
    d_lat = end.lat - start.lat
    d_lng = end.lng - start.lng
    length_sq = d_lat * d_lat + d_lng * d_lng

    if length_sq == 0:
        return distance(point, start)

    t = ((point.lat - start.lat) * d_lat + (point.lng - start.lng) * d_lng) / length_sq
    if t <= 0:
        nearest = start
    elif t >= 1:
        nearest = end
    else:
        nearest = Location(lat=start.lat + t * d_lat, lng=start.lng + t * d_lng)
    return distance(point, nearest)


def distance_to_waypoints(point: Location, waypoints: Iterable[Location]) -> float:
    """Minimum distance from *point* to an ordered polyline of waypoints."""
    points = list(waypoints)
    if not points:
        return math.inf

    best = min(distance(point, waypoint) for waypoint in points)
    for start, end in zip(points, points[1:]):
        best = min(best, distance_to_segment(point, start, end))
    return best


def distance_from_route(point: Location, route: Route) -> float:
    """Minimum distance from *point* to *route*, in meters."""
    return distance_to_waypoints(point, route.waypoints)


def within(point: Location, center: Location, radius: float) -> bool:
    return distance(point, center) <= radius
