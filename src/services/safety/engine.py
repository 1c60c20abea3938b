"""Threat assessment engine.

Combines the four factor scores into one weighted score and maps it to a
discrete :class:`ThreatLevel` and :class:`ThreatAction`. Everything here
is pure: the caller appends the result to history and decides whether
to escalate.

Two synthetic assessments bypass scoring entirely: the manual panic
trigger, and forced levels for exercising thresholds end-to-end in test
environments. They live here, as separate functions, so their thresholds
cannot drift from the live path.
"""

from __future__ import annotations

from typing import Sequence

from src.models.enums import ThreatAction, ThreatLevel
from src.models.ride import (
    DeviationPoint,
    HighRiskZone,
    Location,
    Route,
    ThreatAssessment,
    ThreatFactors,
)
from src.services.safety.constants import (
    LOW_THREAT_FLOOR,
    THREAT_THRESHOLDS,
    THREAT_WEIGHTS,
    UNKNOWN_LOCATION_DEVIATION,
)
from src.services.safety.factors import (
    high_risk_zone_score,
    location_disabled_score,
    route_deviation_score,
    suspicious_stops_score,
)


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def weighted_score(factors: ThreatFactors) -> float:
    return _clamp(
        factors.route_deviation * THREAT_WEIGHTS["ROUTE_DEVIATION"]
        + factors.suspicious_stops * THREAT_WEIGHTS["SUSPICIOUS_STOPS"]
        + factors.high_risk_zone * THREAT_WEIGHTS["HIGH_RISK_ZONE"]
        + factors.location_disabled * THREAT_WEIGHTS["LOCATION_DISABLED"]
    )


def classify_score(score: float) -> tuple[ThreatLevel, ThreatAction]:
    """Map a score to its level and action, checking the highest band first."""
    if score >= THREAT_THRESHOLDS["EMERGENCY_ESCALATION"]:
        return ThreatLevel.CRITICAL, ThreatAction.EMERGENCY_ESCALATION
    if score >= THREAT_THRESHOLDS["SILENT_DISPATCH"]:
        return ThreatLevel.HIGH, ThreatAction.SILENT_DISPATCH
    if score >= THREAT_THRESHOLDS["SOFT_ALERT"]:
        return ThreatLevel.MEDIUM, ThreatAction.LOG
    if score > LOW_THREAT_FLOOR:
        return ThreatLevel.LOW, ThreatAction.NONE
    return ThreatLevel.SAFE, ThreatAction.NONE


def build_assessment(factors: ThreatFactors, *, now_ms: int, score: float | None = None) -> ThreatAssessment:
    """Assemble an assessment, deriving the score from *factors* unless given."""
    final_score = weighted_score(factors) if score is None else _clamp(score)
    level, action = classify_score(final_score)
    return ThreatAssessment(
        timestamp=now_ms,
        score=final_score,
        factors=factors,
        level=level,
        action=action,
    )


def assess_threat(
    current_location: Location | None,
    confirmed_route: Route,
    location_history: Sequence[Location],
    deviation_history: Sequence[DeviationPoint],
    high_risk_zones: Sequence[HighRiskZone],
    location_enabled: bool,
    last_update_time: int,
    *,
    now_ms: int,
) -> ThreatAssessment:
    """Score the rider's current situation.

    Parameters
    ----------
    current_location:
        Latest position, or ``None`` when unknown. An unknown position
        counts as a moderate route deviation (0.5) and contributes no
        zone risk.
    confirmed_route:
        The monitoring baseline.
    location_history:
        Ordered samples, oldest first, used for stop detection.
    deviation_history:
        Recorded off-route intervals.
    high_risk_zones:
        Reference zones for the ride's area.
    location_enabled:
        Whether the device reports location services as on.
    last_update_time:
        Timestamp (ms) of the previous location update.
    now_ms:
        Evaluation time; becomes the assessment's timestamp.
    """
    if current_location is None:
        deviation = UNKNOWN_LOCATION_DEVIATION
        zone = 0.0
    else:
        deviation = route_deviation_score(
            current_location, confirmed_route, deviation_history, now_ms=now_ms,
        )
        zone = high_risk_zone_score(current_location, high_risk_zones)

    factors = ThreatFactors(
        route_deviation=deviation,
        suspicious_stops=suspicious_stops_score(location_history),
        high_risk_zone=zone,
        location_disabled=location_disabled_score(location_enabled, now_ms - last_update_time),
    )
    return build_assessment(factors, now_ms=now_ms)


def panic_assessment(*, now_ms: int) -> ThreatAssessment:
    """Synthetic maximum-threat assessment for the manual panic trigger."""
    return ThreatAssessment(
        timestamp=now_ms,
        score=1.0,
        factors=ThreatFactors(),
        level=ThreatLevel.CRITICAL,
        action=ThreatAction.EMERGENCY_ESCALATION,
    )


def forced_assessment(forced_score: float, *, now_ms: int) -> ThreatAssessment:
    """Assessment pinned to *forced_score*, for threshold testing only.

    Level and action come from the live thresholds; factors are
    back-filled as ``score x weight`` purely for display.
    """
    score = _clamp(forced_score)
    factors = ThreatFactors(
        route_deviation=score * THREAT_WEIGHTS["ROUTE_DEVIATION"],
        suspicious_stops=score * THREAT_WEIGHTS["SUSPICIOUS_STOPS"],
        high_risk_zone=score * THREAT_WEIGHTS["HIGH_RISK_ZONE"],
        location_disabled=score * THREAT_WEIGHTS["LOCATION_DISABLED"],
    )
    return build_assessment(factors, now_ms=now_ms, score=score)
