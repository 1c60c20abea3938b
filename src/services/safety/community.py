"""Community report validation.

Crowd-sourced safety reports can nudge route scores, but only after they
pass a few manipulation checks. These heuristics are illustrative, not
adversarially hardened:

1. Low-trust reporters are ignored.
2. A reporter filing more than five reports in 24 hours is ignored.
3. More than ten reports within 500 m in the last hour looks like a
   coordinated campaign, so the area's new reports are ignored.

Surviving reports get a weight that decays linearly over 30 days and is
heavily discounted unless at least three verified reports of the same
type agree nearby.
"""

from __future__ import annotations

from typing import Sequence

from src.models.ride import CommunityReport, ReportValidation
from src.services.safety.constants import (
    AREA_SPIKE_MAX_REPORTS,
    AREA_SPIKE_WINDOW_MS,
    COMMUNITY_SETTINGS,
    MS_PER_DAY,
    REPORT_AREA_RADIUS_METERS,
    REPORTER_MAX_REPORTS,
    REPORTER_WINDOW_MS,
    UNCONFIRMED_REPORT_DISCOUNT,
)
from src.services.safety.geometry import distance


def _rejected(reason: str) -> ReportValidation:
    return ReportValidation(valid=False, weight=0.0, reason=reason)


def validate_community_report(
    report: CommunityReport,
    existing_reports: Sequence[CommunityReport],
    *,
    now_ms: int,
) -> ReportValidation:
    """Decide whether *report* may influence scoring, and by how much.

    Rules are checked in order and the first failure wins. The report is
    never modified.
    """
    if report.reporter_trust_score < COMMUNITY_SETTINGS["MIN_TRUST_SCORE"]:
        return _rejected("Reporter trust score too low")

    same_reporter_recent = [
        r for r in existing_reports
        if r.reporter_id == report.reporter_id and now_ms - r.timestamp < REPORTER_WINDOW_MS
    ]
    if len(same_reporter_recent) > REPORTER_MAX_REPORTS:
        return _rejected("Suspicious reporting frequency")

    nearby = [
        r for r in existing_reports
        if distance(r.location, report.location) < REPORT_AREA_RADIUS_METERS
    ]
    recent_nearby = [r for r in nearby if now_ms - r.timestamp < AREA_SPIKE_WINDOW_MS]
    if len(recent_nearby) > AREA_SPIKE_MAX_REPORTS:
        return _rejected("Possible coordinated manipulation")

    age_days = (now_ms - report.timestamp) / MS_PER_DAY
    decay = max(0.0, 1 - age_days / COMMUNITY_SETTINGS["DECAY_DAYS"])

    consensus = sum(1 for r in nearby if r.type == report.type and r.is_verified)
    weight = COMMUNITY_SETTINGS["MAX_WEIGHT"] * decay * report.reporter_trust_score
    if consensus < COMMUNITY_SETTINGS["MIN_CONSENSUS"]:
        weight *= UNCONFIRMED_REPORT_DISCOUNT

    return ReportValidation(valid=True, weight=weight)
