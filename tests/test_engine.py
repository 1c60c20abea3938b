"""Tests for the threat assessment engine: weighting, thresholds, and
synthetic (panic / forced) assessments."""

from __future__ import annotations

import itertools

import pytest

from src.models.enums import ThreatAction, ThreatLevel
from src.models.ride import HighRiskZone, Location, Route, ThreatFactors
from src.services.safety.engine import (
    assess_threat,
    build_assessment,
    classify_score,
    forced_assessment,
    panic_assessment,
    weighted_score,
)

NOW = 1_700_000_000_000

ROUTE = Route(waypoints=(Location(lat=0.0, lng=0.0), Location(lat=0.0, lng=0.01)))


class TestClassifyScore:
    @pytest.mark.parametrize(
        ("score", "level", "action"),
        [
            (0.0, ThreatLevel.SAFE, ThreatAction.NONE),
            (0.2, ThreatLevel.SAFE, ThreatAction.NONE),
            (0.21, ThreatLevel.LOW, ThreatAction.NONE),
            (0.39, ThreatLevel.LOW, ThreatAction.NONE),
            (0.4, ThreatLevel.MEDIUM, ThreatAction.LOG),
            (0.69, ThreatLevel.MEDIUM, ThreatAction.LOG),
            (0.7, ThreatLevel.HIGH, ThreatAction.SILENT_DISPATCH),
            (0.89, ThreatLevel.HIGH, ThreatAction.SILENT_DISPATCH),
            (0.9, ThreatLevel.CRITICAL, ThreatAction.EMERGENCY_ESCALATION),
            (1.0, ThreatLevel.CRITICAL, ThreatAction.EMERGENCY_ESCALATION),
        ],
    )
    def test_threshold_boundaries(self, score: float, level: ThreatLevel, action: ThreatAction) -> None:
        assert classify_score(score) == (level, action)


class TestWeightedScore:
    def test_weights(self) -> None:
        factors = ThreatFactors(route_deviation=1.0)
        assert weighted_score(factors) == pytest.approx(0.4)
        factors = ThreatFactors(suspicious_stops=1.0, location_disabled=1.0)
        assert weighted_score(factors) == pytest.approx(0.4)

    def test_always_within_unit_interval(self) -> None:
        grid = (0.0, 0.25, 0.5, 0.75, 1.0)
        for rd, ss, hz, ld in itertools.product(grid, repeat=4):
            factors = ThreatFactors(
                route_deviation=rd, suspicious_stops=ss, high_risk_zone=hz, location_disabled=ld,
            )
            assert 0.0 <= weighted_score(factors) <= 1.0

    def test_all_factors_maxed_is_critical(self) -> None:
        factors = ThreatFactors(
            route_deviation=1.0, suspicious_stops=1.0, high_risk_zone=1.0, location_disabled=1.0,
        )
        assessment = build_assessment(factors, now_ms=NOW)
        assert assessment.score == pytest.approx(1.0)
        assert assessment.level == ThreatLevel.CRITICAL


class TestAssessThreat:
    def test_on_route_recent_update_is_safe(self) -> None:
        here = Location(lat=0.0, lng=0.005, timestamp=NOW)
        assessment = assess_threat(here, ROUTE, [here], [], [], True, NOW - 5_000, now_ms=NOW)
        assert assessment.score == 0.0
        assert assessment.level == ThreatLevel.SAFE
        assert assessment.action == ThreatAction.NONE

    def test_timestamp_is_evaluation_time(self) -> None:
        here = Location(lat=0.0, lng=0.005, timestamp=123)
        assessment = assess_threat(here, ROUTE, [here], [], [], True, NOW, now_ms=NOW)
        assert assessment.timestamp == NOW

    def test_unknown_location_defaults(self) -> None:
        assessment = assess_threat(None, ROUTE, [], [], [], True, NOW, now_ms=NOW)
        assert assessment.factors.route_deviation == 0.5
        assert assessment.factors.high_risk_zone == 0.0

    def test_unknown_location_with_disabled_services(self) -> None:
        assessment = assess_threat(None, ROUTE, [], [], [], False, NOW, now_ms=NOW)
        assert assessment.factors.location_disabled == 1.0
        assert assessment.score == pytest.approx(0.3)
        assert assessment.level == ThreatLevel.LOW

    def test_zone_factor_uses_current_location(self) -> None:
        here = Location(lat=0.0, lng=0.005, timestamp=NOW)
        zone = HighRiskZone(id="z", center=here, radius=200.0, risk_level=0.8)
        assessment = assess_threat(here, ROUTE, [here], [], [zone], True, NOW, now_ms=NOW)
        assert assessment.factors.high_risk_zone == pytest.approx(0.8)
        assert assessment.score == pytest.approx(0.16)


class TestSyntheticAssessments:
    def test_panic_is_maximum(self) -> None:
        assessment = panic_assessment(now_ms=NOW)
        assert assessment.score == 1.0
        assert assessment.level == ThreatLevel.CRITICAL
        assert assessment.action == ThreatAction.EMERGENCY_ESCALATION
        assert assessment.factors == ThreatFactors()

    def test_forced_score_095_is_critical(self) -> None:
        assessment = forced_assessment(0.95, now_ms=NOW)
        assert assessment.score == pytest.approx(0.95)
        assert assessment.level == ThreatLevel.CRITICAL
        assert assessment.action == ThreatAction.EMERGENCY_ESCALATION

    def test_forced_factors_back_filled_by_weight(self) -> None:
        assessment = forced_assessment(0.5, now_ms=NOW)
        assert assessment.factors.route_deviation == pytest.approx(0.2)
        assert assessment.factors.suspicious_stops == pytest.approx(0.15)
        assert assessment.factors.high_risk_zone == pytest.approx(0.1)
        assert assessment.factors.location_disabled == pytest.approx(0.05)
        assert assessment.level == ThreatLevel.MEDIUM

    @pytest.mark.parametrize(
        ("score", "action"),
        [
            (0.1, ThreatAction.NONE),
            (0.75, ThreatAction.SILENT_DISPATCH),
        ],
    )
    def test_forced_uses_live_thresholds(self, score: float, action: ThreatAction) -> None:
        assert forced_assessment(score, now_ms=NOW).action == action
