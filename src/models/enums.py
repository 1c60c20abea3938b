from __future__ import annotations

from enum import StrEnum
from typing import Final


class LocationSource(StrEnum):
    __slots__ = ()

    GPS = "gps"
    NETWORK = "network"
    WIFI = "wifi"
    CELL = "cell"
    LAST_KNOWN = "last_known"


class ReportType(StrEnum):
    __slots__ = ()

    UNSAFE_AREA = "unsafe_area"
    SAFE_AREA = "safe_area"
    INCIDENT = "incident"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


class ThreatLevel(StrEnum):
    __slots__ = ()

    SAFE = "safe"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ThreatAction(StrEnum):
    """What the monitor does with an assessment, ordered by severity."""

    __slots__ = ()

    NONE = "none"
    LOG = "log"
    SILENT_DISPATCH = "silent_dispatch"
    EMERGENCY_ESCALATION = "emergency_escalation"

    @property
    def escalates(self) -> bool:
        return self in _ESCALATING_ACTIONS

    @property
    def notifies_emergency_services(self) -> bool:
        return self is ThreatAction.EMERGENCY_ESCALATION


_ESCALATING_ACTIONS: Final[frozenset[ThreatAction]] = frozenset({
    ThreatAction.SILENT_DISPATCH,
    ThreatAction.EMERGENCY_ESCALATION,
})


class RideStatus(StrEnum):
    __slots__ = ()

    SETUP = "setup"
    ACTIVE = "active"
    COMPLETED = "completed"
    EMERGENCY = "emergency"
    CANCELLED = "cancelled"

    @property
    def is_closed(self) -> bool:
        return self in (RideStatus.COMPLETED, RideStatus.CANCELLED)

    def can_transition_to(self, target: RideStatus) -> bool:
        return target in RIDE_STATUS_TRANSITIONS[self]


# Emergency is terminal: no later reading or request moves a ride out of it.
RIDE_STATUS_TRANSITIONS: Final[dict[RideStatus, frozenset[RideStatus]]] = {
    RideStatus.SETUP: frozenset({RideStatus.ACTIVE, RideStatus.EMERGENCY, RideStatus.CANCELLED}),
    RideStatus.ACTIVE: frozenset({RideStatus.COMPLETED, RideStatus.EMERGENCY, RideStatus.CANCELLED}),
    RideStatus.EMERGENCY: frozenset(),
    RideStatus.COMPLETED: frozenset(),
    RideStatus.CANCELLED: frozenset(),
}
