"""Forced threat levels for exercising the escalation thresholds end to end.

Kept apart from :class:`RideMonitorService` so the score bypass can only
be reached when the application explicitly wires it in (never in
production, see ``Settings.test_endpoints_enabled``).
"""

from __future__ import annotations

import structlog

from src.models.ride import Location, MonitorResult
from src.services.monitoring import RideMonitorService
from src.services.safety import forced_assessment

logger = structlog.get_logger(__name__)


class ThreatOverrideService:
    __slots__ = ("_monitor",)

    def __init__(self, monitor: RideMonitorService) -> None:
        self._monitor = monitor

    async def force_threat_level(
        self,
        session_id: str,
        forced_score: float,
        location: Location | None = None,
    ) -> MonitorResult:
        """Run the monitoring tail with an assessment pinned to *forced_score*.

        Level and action follow the live thresholds, so a score of 0.95
        produces a critical emergency escalation.
        """
        logger.warning("threat_override.forced", session_id=session_id, forced_score=forced_score)
        return await self._monitor._run_synthetic(
            session_id,
            location,
            lambda now: forced_assessment(forced_score, now_ms=now),
        )
