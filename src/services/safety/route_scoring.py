"""Route safety scoring used when a ride is set up.

A route's safety score is one minus its risk, where risk is 90% average
high-risk-zone exposure along the waypoints plus a community component
capped at 0.1. The cap means no volume of reports can outweigh the
zone data.
"""

from __future__ import annotations

from typing import Sequence

from src.models.enums import ReportType
from src.models.ride import CommunityReport, HighRiskZone, Location, Route
from src.services.safety.community import validate_community_report
from src.services.safety.constants import (
    COMMUNITY_SETTINGS,
    REPORT_AREA_RADIUS_METERS,
    ROUTE_SWITCH_TOLERANCE_METERS,
    SAFE_CORRIDOR_RADIUS,
    ZONE_RISK_SHARE,
)
from src.services.safety.factors import high_risk_zone_score
from src.services.safety.geometry import distance, within


def calculate_route_safety_score(
    route: Route,
    high_risk_zones: Sequence[HighRiskZone],
    community_reports: Sequence[CommunityReport],
    *,
    now_ms: int,
) -> float:
    """Return a safety score in ``[0, 1]``; higher is safer."""
    waypoints = route.waypoints
    risk = sum(high_risk_zone_score(w, high_risk_zones) for w in waypoints) / len(waypoints)

    community = 0.0
    for report in community_reports:
        validation = validate_community_report(report, community_reports, now_ms=now_ms)
        if not validation.valid:
            continue
        contribution = (
            validation.weight if report.type == ReportType.UNSAFE_AREA else -validation.weight * 0.5
        )
        for waypoint in waypoints:
            if distance(waypoint, report.location) < REPORT_AREA_RADIUS_METERS:
                community += contribution

    community = min(max(community / len(waypoints), 0.0), COMMUNITY_SETTINGS["MAX_WEIGHT"])

    return min(max(1 - (risk * ZONE_RISK_SHARE + community), 0.0), 1.0)


def zones_along_route(
    waypoints: Sequence[Location],
    high_risk_zones: Sequence[HighRiskZone],
) -> tuple[HighRiskZone, ...]:
    """Zones whose edge comes within the safe corridor of any waypoint."""
    return tuple(
        zone for zone in high_risk_zones
        if any(within(w, zone.center, zone.radius + SAFE_CORRIDOR_RADIUS) for w in waypoints)
    )


def detect_route_switching(original: Route, current: Route | None) -> bool:
    """True when *current* is not the route that was confirmed.

    Waypoints are compared pairwise with a 50 m tolerance.
    """
    if current is None:
        return False
    if original.id != current.id:
        return True
    if len(original.waypoints) != len(current.waypoints):
        return True
    return any(
        distance(a, b) > ROUTE_SWITCH_TOLERANCE_METERS
        for a, b in zip(original.waypoints, current.waypoints)
    )
