"""Ride safety data model.

Every entity that crosses the monitoring pipeline is a pydantic model.
Samples, routes, zones, community reports, assessments and evidence
packets are frozen once created; the ride session, its emergency
contacts, deviation points and dispatch records are the only mutable
state, and they are owned by the session store rather than by the
scoring functions.

All timestamps are integer milliseconds since the Unix epoch.
"""

from __future__ import annotations

from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import (
    LocationSource,
    ReportType,
    RideStatus,
    ThreatAction,
    ThreatLevel,
)
from src.models.errors import InvalidStatusTransitionError


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Geographic primitives
# ---------------------------------------------------------------------------


class Location(BaseModel):
    """A single immutable position sample."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    timestamp: int = 0
    accuracy: float | None = None
    source: LocationSource = LocationSource.GPS


class HighRiskZone(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    center: Location
    radius: float = Field(..., gt=0)  # meters
    risk_level: float = Field(..., ge=0.0, le=1.0)
    reason: str = ""
    report_count: int = 0
    last_reported: int = 0


class Route(BaseModel):
    """A candidate or confirmed route.

    Once confirmed, a route is the monitoring baseline for the ride: its
    identity and waypoints never change afterwards.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: _new_id("route"))
    waypoints: tuple[Location, ...] = Field(..., min_length=2)
    safety_score: float = Field(default=0.5, ge=0.0, le=1.0)
    distance: float = 0.0  # meters
    estimated_duration: float = 0.0  # minutes
    high_risk_zones: tuple[HighRiskZone, ...] = ()


class CommunityReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    reporter_id: str
    reporter_trust_score: float
    location: Location
    type: ReportType
    description: str = ""
    timestamp: int
    verification_count: int = 0
    is_verified: bool = False


class ReportValidation(BaseModel):
    """Derived weight for a community report; the report itself is untouched."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    weight: float = 0.0
    reason: str | None = None


class RouteCandidate(BaseModel):
    """Raw route geometry as returned by a routing provider."""

    model_config = ConfigDict(frozen=True)

    waypoints: tuple[Location, ...] = Field(..., min_length=2)
    distance_meters: float
    duration_minutes: float


# ---------------------------------------------------------------------------
# Monitoring state
# ---------------------------------------------------------------------------


class DeviationPoint(BaseModel):
    """An interval during which the rider was outside the safe corridor.

    ``timestamp`` is the time of the most recent off-route sample and
    ``duration`` the time elapsed since the interval began.
    """

    location: Location
    distance_from_route: float
    duration: int = 0
    timestamp: int


class ThreatFactors(BaseModel):
    model_config = ConfigDict(frozen=True)

    route_deviation: float = Field(default=0.0, ge=0.0, le=1.0)
    suspicious_stops: float = Field(default=0.0, ge=0.0, le=1.0)
    high_risk_zone: float = Field(default=0.0, ge=0.0, le=1.0)
    location_disabled: float = Field(default=0.0, ge=0.0, le=1.0)


class ThreatAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: int
    score: float = Field(..., ge=0.0, le=1.0)
    factors: ThreatFactors
    level: ThreatLevel
    action: ThreatAction


class VehicleInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    license_plate: str = ""
    driver_name: str = ""
    vehicle_model: str = ""
    vehicle_color: str = ""


class EmergencyContact(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("ec"))
    name: str
    phone: str = ""
    email: str = ""
    relationship: str = ""
    notified: bool = False
    notified_at: int | None = None

    def mark_notified(self, at_ms: int) -> bool:
        """Flip ``notified`` once; return False if it was already set."""
        if self.notified:
            return False
        self.notified = True
        self.notified_at = at_ms
        return True


class EvidencePacket(BaseModel):
    """Snapshot of the ride history taken at the moment of escalation."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    timestamp: int
    gps_history: tuple[Location, ...] = ()
    deviation_points: tuple[DeviationPoint, ...] = ()
    threat_assessments: tuple[ThreatAssessment, ...] = ()
    escalation_reason: str
    vehicle_info: VehicleInfo | None = None
    emergency_contacts_notified: tuple[EmergencyContact, ...] = ()


class SilentDispatch(BaseModel):
    """The active emergency-response record for a ride."""

    id: str = Field(default_factory=lambda: _new_id("dispatch"))
    session_id: str
    triggered_at: int
    threat_score: float
    last_known_location: Location | None = None
    live_updates: list[Location] = Field(default_factory=list)
    emergency_services_notified: bool = False
    contacts_notified: list[str] = Field(default_factory=list)
    evidence_packet: EvidencePacket


class EscalationResult(BaseModel):
    dispatch_id: str
    actions: list[str] = Field(default_factory=list)
    evidence_packet: EvidencePacket
    emergency_services_notified: bool = False


class MonitorResult(BaseModel):
    """What the monitor returns for every evaluated event."""

    threat_assessment: ThreatAssessment
    distance_from_route: float | None = None
    is_deviated: bool = False
    escalation: EscalationResult | None = None
    status: RideStatus
    warning: str | None = None


# ---------------------------------------------------------------------------
# Ride session
# ---------------------------------------------------------------------------


def _append_bounded(items: list, item: object, capacity: int) -> None:
    """Append *item*, evicting the oldest entries beyond *capacity*."""
    items.append(item)
    overflow = len(items) - capacity
    if overflow > 0:
        del items[:overflow]


class RideSession(BaseModel):
    """All state for one monitored trip.

    Location and threat histories are fixed-capacity append logs: when
    full, the oldest entry is dropped.
    """

    id: str = Field(default_factory=lambda: _new_id("ride"))
    user_id: str = "anonymous"
    source: Location
    destination: Location
    confirmed_route: Route
    alternative_routes: list[Route] = Field(default_factory=list)
    start_time: int
    status: RideStatus = RideStatus.SETUP
    location_history: list[Location] = Field(default_factory=list)
    threat_history: list[ThreatAssessment] = Field(default_factory=list)
    deviation_history: list[DeviationPoint] = Field(default_factory=list)
    emergency_contacts: list[EmergencyContact] = Field(default_factory=list)
    vehicle_info: VehicleInfo | None = None
    dispatch_id: str | None = None

    @property
    def last_location(self) -> Location | None:
        return self.location_history[-1] if self.location_history else None

    def record_location(self, location: Location, capacity: int) -> None:
        _append_bounded(self.location_history, location, capacity)

    def record_assessment(self, assessment: ThreatAssessment, capacity: int) -> None:
        _append_bounded(self.threat_history, assessment, capacity)

    def transition_to(self, target: RideStatus) -> bool:
        """Move to *target*; return False when already there.

        Raises
        ------
        InvalidStatusTransitionError
            If the transition table does not allow the move.
        """
        if self.status == target:
            return False
        if not self.status.can_transition_to(target):
            raise InvalidStatusTransitionError(self.status.value, target.value)
        self.status = target
        return True


class RideSetup(BaseModel):
    """A newly created ride with the reference data it was scored against."""

    session: RideSession
    high_risk_zones: list[HighRiskZone] = Field(default_factory=list)
    community_reports: list[CommunityReport] = Field(default_factory=list)
    warning: str | None = None
