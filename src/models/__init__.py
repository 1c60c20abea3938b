from src.models.enums import (
    LocationSource,
    ReportType,
    RideStatus,
    ThreatAction,
    ThreatLevel,
)
from src.models.errors import (
    DispatchNotFoundError,
    InvalidStatusTransitionError,
    RouteLockedError,
    RouteNotFoundError,
    SessionClosedError,
    SessionNotFoundError,
)
from src.models.ride import (
    CommunityReport,
    DeviationPoint,
    EmergencyContact,
    EscalationResult,
    EvidencePacket,
    HighRiskZone,
    Location,
    MonitorResult,
    ReportValidation,
    RideSession,
    RideSetup,
    Route,
    RouteCandidate,
    SilentDispatch,
    ThreatAssessment,
    ThreatFactors,
    VehicleInfo,
)

__all__ = [
    "CommunityReport",
    "DeviationPoint",
    "DispatchNotFoundError",
    "EmergencyContact",
    "EscalationResult",
    "EvidencePacket",
    "HighRiskZone",
    "InvalidStatusTransitionError",
    "Location",
    "LocationSource",
    "MonitorResult",
    "ReportType",
    "ReportValidation",
    "RideSession",
    "RideSetup",
    "RideStatus",
    "Route",
    "RouteCandidate",
    "RouteLockedError",
    "RouteNotFoundError",
    "SessionClosedError",
    "SessionNotFoundError",
    "SilentDispatch",
    "ThreatAction",
    "ThreatAssessment",
    "ThreatFactors",
    "ThreatLevel",
    "VehicleInfo",
]
