"""The four independent threat factors.

Each calculator is a pure function returning a value in ``[0, 1]``;
higher means more dangerous. Callers supply the evaluation clock so the
same inputs always produce the same score.
"""

from __future__ import annotations

from typing import Sequence

from src.models.ride import DeviationPoint, HighRiskZone, Location, Route
from src.services.safety.constants import (
    DEVIATION_DISTANCE_CAP_METERS,
    DEVIATION_DISTANCE_WEIGHT,
    DEVIATION_TIME_WEIGHT,
    DEVIATION_WINDOW_MS,
    SAFE_CORRIDOR_RADIUS,
    STALE_SCORE,
    STALE_UPDATE_MS,
    STOPPED_SPEED_MPS,
    STOPS_FOR_MAX_SCORE,
    SUSPICIOUS_STOP_DURATION,
    VERY_STALE_SCORE,
    VERY_STALE_UPDATE_MS,
)
from src.services.safety.geometry import distance, distance_from_route


def route_deviation_score(
    current_location: Location,
    confirmed_route: Route,
    deviation_history: Sequence[DeviationPoint],
    *,
    now_ms: int,
) -> float:
    """Score how far, and for how long, the rider has left the route.

    Zero inside the safe corridor. Outside it, 60% comes from distance
    (saturating at 1 km) and 40% from time spent off-route during the
    last five minutes (saturating at five minutes).
    """
    off_route = distance_from_route(current_location, confirmed_route)
    if off_route <= SAFE_CORRIDOR_RADIUS:
        return 0.0

    distance_score = min(off_route / DEVIATION_DISTANCE_CAP_METERS, 1.0)

    recent_ms = sum(
        point.duration
        for point in deviation_history
        if now_ms - point.timestamp < DEVIATION_WINDOW_MS
    )
    time_score = min(max(recent_ms, 0) / DEVIATION_WINDOW_MS, 1.0)

    return min(
        distance_score * DEVIATION_DISTANCE_WEIGHT + time_score * DEVIATION_TIME_WEIGHT,
        1.0,
    )


def count_suspicious_stops(location_history: Sequence[Location]) -> int:
    """Count stops longer than a minute in an ordered location history.

    A pair of consecutive samples moving slower than 1 m/s is "stopped".
    Contiguous stopped time is accumulated; a stop is counted when it has
    exceeded the threshold and then either ends or is still ongoing at
    the end of the history.
    """
    stops = 0
    stopped_ms = 0

    for previous, current in zip(location_history, location_history[1:]):
        elapsed_ms = current.timestamp - previous.timestamp
        speed = distance(previous, current) / (elapsed_ms / 1000) if elapsed_ms > 0 else 0.0

        if speed < STOPPED_SPEED_MPS:
            stopped_ms += elapsed_ms
        else:
            if stopped_ms > SUSPICIOUS_STOP_DURATION:
                stops += 1
            stopped_ms = 0

    if stopped_ms > SUSPICIOUS_STOP_DURATION:
        stops += 1

    return stops


def suspicious_stops_score(location_history: Sequence[Location]) -> float:
    """Three or more long stops saturate the score."""
    if len(location_history) < 2:
        return 0.0
    return min(count_suspicious_stops(location_history) / STOPS_FOR_MAX_SCORE, 1.0)


def zone_risk(point: Location, zone: HighRiskZone) -> float:
    """Full risk inside the zone, linear falloff to zero at twice its radius."""
    d = distance(point, zone.center)
    if d <= zone.radius:
        return zone.risk_level
    if d <= zone.radius * 2:
        return zone.risk_level * (1 - (d - zone.radius) / zone.radius)
    return 0.0


def high_risk_zone_score(current_location: Location, zones: Sequence[HighRiskZone]) -> float:
    """Worst single zone wins; overlapping zones are not summed."""
    return max((zone_risk(current_location, zone) for zone in zones), default=0.0)


def location_disabled_score(location_enabled: bool, time_since_last_update_ms: int) -> float:
    if not location_enabled:
        return 1.0
    if time_since_last_update_ms > VERY_STALE_UPDATE_MS:
        return VERY_STALE_SCORE
    if time_since_last_update_ms > STALE_UPDATE_MS:
        return STALE_SCORE
    return 0.0
