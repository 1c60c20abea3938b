"""Thresholds, weights and tuning constants for ride threat scoring.

These values are shared with the mobile client and dashboards; changing
any of them changes when a rider's contacts get woken up at night.
"""

from __future__ import annotations

from typing import Final

# Geometry
EARTH_RADIUS_METERS: Final[float] = 6_371_000.0

# Safe corridor around the confirmed route (meters)
SAFE_CORRIDOR_RADIUS: Final[float] = 100.0

# Timing (milliseconds)
SUSPICIOUS_STOP_DURATION: Final[int] = 60_000
LOCATION_UPDATE_INTERVAL: Final[int] = 10_000

# Threat score thresholds
THREAT_THRESHOLDS: Final[dict[str, float]] = {
    "SOFT_ALERT": 0.4,
    "SILENT_DISPATCH": 0.7,
    "EMERGENCY_ESCALATION": 0.9,
}
LOW_THREAT_FLOOR: Final[float] = 0.2

# Threat factor weights (sum to 1)
THREAT_WEIGHTS: Final[dict[str, float]] = {
    "ROUTE_DEVIATION": 0.4,
    "SUSPICIOUS_STOPS": 0.3,
    "HIGH_RISK_ZONE": 0.2,
    "LOCATION_DISABLED": 0.1,
}

# Community report settings
COMMUNITY_SETTINGS: Final[dict[str, float]] = {
    "MAX_WEIGHT": 0.1,
    "MIN_TRUST_SCORE": 0.3,
    "MIN_CONSENSUS": 3,
    "DECAY_DAYS": 30,
}

# Route deviation factor
DEVIATION_DISTANCE_CAP_METERS: Final[float] = 1_000.0
DEVIATION_WINDOW_MS: Final[int] = 300_000
DEVIATION_DISTANCE_WEIGHT: Final[float] = 0.6
DEVIATION_TIME_WEIGHT: Final[float] = 0.4
DEVIATION_CONTINUATION_GAP_MS: Final[int] = 2 * LOCATION_UPDATE_INTERVAL
DEVIATION_RETENTION_MS: Final[int] = 600_000

# Suspicious stops factor
STOPPED_SPEED_MPS: Final[float] = 1.0
STOPS_FOR_MAX_SCORE: Final[int] = 3

# Location disabled factor
STALE_UPDATE_MS: Final[int] = 30_000
VERY_STALE_UPDATE_MS: Final[int] = 60_000
STALE_SCORE: Final[float] = 0.4
VERY_STALE_SCORE: Final[float] = 0.8

# Unknown position defaults
UNKNOWN_LOCATION_DEVIATION: Final[float] = 0.5

# Community report heuristics
REPORT_AREA_RADIUS_METERS: Final[float] = 500.0
REPORTER_WINDOW_MS: Final[int] = 86_400_000
REPORTER_MAX_REPORTS: Final[int] = 5
AREA_SPIKE_WINDOW_MS: Final[int] = 3_600_000
AREA_SPIKE_MAX_REPORTS: Final[int] = 10
UNCONFIRMED_REPORT_DISCOUNT: Final[float] = 0.3
MS_PER_DAY: Final[int] = 86_400_000

# Route scoring
ZONE_RISK_SHARE: Final[float] = 0.9
NEUTRAL_SAFETY_SCORE: Final[float] = 0.5
ROUTE_SWITCH_TOLERANCE_METERS: Final[float] = 50.0

# Network loss
NETWORK_LOSS_SATURATION_MS: Final[int] = 300_000
NETWORK_LOSS_WEIGHT: Final[float] = 0.2
