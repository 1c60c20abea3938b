"""SafeRide service layer -- threat scoring, monitoring, escalation and
supporting integrations (session store, routing, email).
"""

from __future__ import annotations

from src.services.escalation import EscalationOrchestrator
from src.services.monitoring import RideMonitorService
from src.services.notifications import EmailNotifier
from src.services.routing import OSRMRouteProvider, RoutingError
from src.services.session_store import SessionStore
from src.services.threat_override import ThreatOverrideService

__all__ = [
    "EmailNotifier",
    "EscalationOrchestrator",
    "OSRMRouteProvider",
    "RideMonitorService",
    "RoutingError",
    "SessionStore",
    "ThreatOverrideService",
]
