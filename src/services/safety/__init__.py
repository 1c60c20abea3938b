"""Pure threat-scoring core: geometry, factors, assessment, route scoring.

Nothing in this package performs I/O, logs, or keeps state between
calls, so it is safe to call from any task or thread.
"""

from __future__ import annotations

from src.services.safety.community import validate_community_report
from src.services.safety.deviation import is_deviated, track_deviation
from src.services.safety.engine import (
    assess_threat,
    build_assessment,
    classify_score,
    forced_assessment,
    panic_assessment,
    weighted_score,
)
from src.services.safety.factors import (
    count_suspicious_stops,
    high_risk_zone_score,
    location_disabled_score,
    route_deviation_score,
    suspicious_stops_score,
)
from src.services.safety.geometry import distance, distance_from_route, distance_to_segment
from src.services.safety.route_scoring import (
    calculate_route_safety_score,
    detect_route_switching,
    zones_along_route,
)

__all__ = [
    "assess_threat",
    "build_assessment",
    "calculate_route_safety_score",
    "classify_score",
    "count_suspicious_stops",
    "detect_route_switching",
    "distance",
    "distance_from_route",
    "distance_to_segment",
    "forced_assessment",
    "high_risk_zone_score",
    "is_deviated",
    "location_disabled_score",
    "panic_assessment",
    "route_deviation_score",
    "suspicious_stops_score",
    "track_deviation",
    "validate_community_report",
    "weighted_score",
    "zones_along_route",
]
