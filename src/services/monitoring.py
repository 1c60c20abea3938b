"""Ride monitoring service.

Owns the ride lifecycle (setup, route confirmation, end) and turns every
monitoring event into a :class:`MonitorResult`:

* ``update_location`` -- regular position sample
* ``location_disabled`` -- location services switched off mid-ride
* ``network_loss`` -- device offline for a known duration
* ``manual_emergency`` -- panic trigger, bypasses scoring

Sessions live in the :class:`SessionStore`; the service loads, mutates
and writes one back inside a per-session :class:`asyncio.Lock`, so
concurrent events for the same ride are applied one at a time while
different rides proceed independently.  Scoring is delegated to the pure
functions in :mod:`src.services.safety`; escalation to the
:class:`EscalationOrchestrator`.
"""

from __future__ import annotations

import asyncio
import contextlib
import weakref
from typing import TYPE_CHECKING, AsyncIterator, Callable, Sequence

import structlog

from src.models.enums import LocationSource, RideStatus
from src.models.errors import (
    DispatchNotFoundError,
    RideNotStartedError,
    RouteLockedError,
    RouteNotFoundError,
    SessionClosedError,
    SessionNotFoundError,
)
from src.models.ride import (
    EmergencyContact,
    Location,
    MonitorResult,
    RideSession,
    RideSetup,
    Route,
    RouteCandidate,
    SilentDispatch,
    ThreatAssessment,
    VehicleInfo,
)
from src.services.clock import now_ms as _system_now_ms
from src.services.escalation import EscalationOrchestrator
from src.services.routing import RouteProvider, straight_line_route
from src.services.safety import (
    assess_threat,
    build_assessment,
    calculate_route_safety_score,
    detect_route_switching,
    distance_from_route,
    is_deviated,
    panic_assessment,
    track_deviation,
    zones_along_route,
)
from src.services.safety.constants import (
    DEVIATION_RETENTION_MS,
    NETWORK_LOSS_SATURATION_MS,
    NETWORK_LOSS_WEIGHT,
    NEUTRAL_SAFETY_SCORE,
)
from src.services.session_store import SessionStore

if TYPE_CHECKING:
    from src.data.reference import ReferenceData

logger = structlog.get_logger(__name__)

FALLBACK_ROUTING_WARNING = "Using fallback routing due to service unavailability"
LOCATION_DISABLED_WARNING = "Location services disabled - treated as high-risk event"
NETWORK_LOSS_WARNING = "Network connectivity lost"


class RideMonitorService:
    """Ride lifecycle plus live threat monitoring.

    Parameters
    ----------
    store:
        Session and dispatch storage.
    route_provider:
        Source of candidate routes at setup.
    escalation:
        Runs silent dispatch and emergency escalation.
    reference:
        High-risk zones, community reports and default contacts.
    """

    __slots__ = (
        "_clock",
        "_deviation_retention_ms",
        "_escalation",
        "_location_limit",
        "_locks",
        "_reference",
        "_route_alternatives",
        "_route_provider",
        "_store",
        "_threat_limit",
    )

    def __init__(
        self,
        store: SessionStore,
        route_provider: RouteProvider,
        escalation: EscalationOrchestrator,
        reference: ReferenceData,
        *,
        location_history_limit: int = 100,
        threat_history_limit: int = 50,
        deviation_retention_ms: int = DEVIATION_RETENTION_MS,
        route_alternatives: int = 3,
        clock: Callable[[], int] = _system_now_ms,
    ) -> None:
        self._store = store
        self._route_provider = route_provider
        self._escalation = escalation
        self._reference = reference
        self._location_limit = location_history_limit
        self._threat_limit = threat_history_limit
        self._deviation_retention_ms = deviation_retention_ms
        self._route_alternatives = route_alternatives
        self._clock = clock
        # Entries vanish once no call holds the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def reference(self) -> ReferenceData:
        return self._reference

    # ------------------------------------------------------------------
    # Session access
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _locked_session(self, session_id: str) -> AsyncIterator[RideSession]:
        """Load *session_id* under its lock and persist it on clean exit."""
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            session = await self._store.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            yield session
            await self._store.put(session)

    async def get_session(self, session_id: str) -> RideSession:
        session = await self._store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def get_dispatch(self, dispatch_id: str) -> SilentDispatch:
        dispatch = await self._store.get_dispatch(dispatch_id)
        if dispatch is None:
            raise DispatchNotFoundError(dispatch_id)
        return dispatch

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_session(
        self,
        source: Location,
        destination: Location,
        *,
        vehicle_info: VehicleInfo | None = None,
        user_id: str = "anonymous",
        emergency_contacts: Sequence[EmergencyContact] | None = None,
    ) -> RideSetup:
        """Plan candidate routes, score them, and open a ride in ``setup``.

        Routes are sorted safest first and the safest becomes the default
        confirmed route.  When the route provider fails, a straight-line
        route with a neutral safety score is used and a warning returned.
        """
        now = self._clock()
        source = source if source.timestamp else source.model_copy(update={"timestamp": now})
        destination = destination if destination.timestamp else destination.model_copy(update={"timestamp": now})

        warning: str | None = None
        try:
            candidates = await self._route_provider.get_routes(source, destination, self._route_alternatives)
        except Exception as exc:
            logger.warning("monitor.routing_fallback", error=str(exc) or type(exc).__name__)
            candidates = []

        if candidates:
            routes = sorted(
                (self._score_route(c, index, now) for index, c in enumerate(candidates)),
                key=lambda r: r.safety_score,
                reverse=True,
            )
        else:
            fallback = straight_line_route(source, destination)
            routes = [
                Route(
                    waypoints=fallback.waypoints,
                    safety_score=NEUTRAL_SAFETY_SCORE,
                    distance=fallback.distance_meters,
                    estimated_duration=fallback.duration_minutes,
                ),
            ]
            warning = FALLBACK_ROUTING_WARNING

        contacts = (
            [c.model_copy() for c in emergency_contacts]
            if emergency_contacts is not None
            else self._reference.fresh_contacts()
        )
        session = RideSession(
            user_id=user_id,
            source=source,
            destination=destination,
            confirmed_route=routes[0],
            alternative_routes=routes,
            start_time=now,
            location_history=[source],
            emergency_contacts=contacts,
            vehicle_info=vehicle_info,
        )
        await self._store.put(session)

        logger.info(
            "monitor.session_created",
            session_id=session.id,
            routes=len(routes),
            safest_score=round(routes[0].safety_score, 3),
            fallback=warning is not None,
        )
        return RideSetup(
            session=session,
            high_risk_zones=list(self._reference.high_risk_zones),
            community_reports=list(self._reference.community_reports),
            warning=warning,
        )

    def _score_route(self, candidate: RouteCandidate, index: int, now: int) -> Route:
        zones = self._reference.high_risk_zones
        route = Route(
            id=f"route-{index}-{now}",
            waypoints=candidate.waypoints,
            distance=candidate.distance_meters,
            estimated_duration=candidate.duration_minutes,
            high_risk_zones=zones_along_route(candidate.waypoints, zones),
        )
        score = calculate_route_safety_score(route, zones, self._reference.community_reports, now_ms=now)
        return route.model_copy(update={"safety_score": score})

    async def confirm_route(self, session_id: str, route_id: str) -> RideSession:
        """Freeze *route_id* as the monitoring baseline and start the ride.

        Raises
        ------
        SessionNotFoundError
            Unknown session.
        RouteNotFoundError
            *route_id* is not one of the session's candidates.
        RouteLockedError
            The ride is already active on a different route.
        InvalidStatusTransitionError
            The ride has already ended or escalated.
        """
        async with self._locked_session(session_id) as session:
            selected = next((r for r in session.alternative_routes if r.id == route_id), None)
            if selected is None:
                raise RouteNotFoundError(route_id)

            if session.status == RideStatus.ACTIVE:
                if detect_route_switching(session.confirmed_route, selected):
                    logger.warning("monitor.route_switch_rejected", session_id=session_id, route_id=route_id)
                    raise RouteLockedError(session_id, route_id)
                return session

            session.transition_to(RideStatus.ACTIVE)
            session.confirmed_route = selected
            logger.info("monitor.route_confirmed", session_id=session_id, route_id=route_id)
            return session

    async def end_ride(self, session_id: str, reason: str = "completed") -> RideSession:
        """Close the ride as ``completed`` or ``cancelled``.

        A ride in ``emergency`` stays there; ending it is a no-op.
        """
        target = RideStatus.CANCELLED if reason == RideStatus.CANCELLED else RideStatus.COMPLETED
        async with self._locked_session(session_id) as session:
            if session.status == RideStatus.EMERGENCY:
                logger.info("monitor.end_ignored_emergency", session_id=session_id)
                return session
            session.transition_to(target)

        logger.info("monitor.ride_ended", session_id=session_id, status=session.status.value)
        return session

    # ------------------------------------------------------------------
    # Monitoring events
    # ------------------------------------------------------------------

    async def update_location(
        self,
        session_id: str,
        location: Location,
        *,
        location_enabled: bool = True,
    ) -> MonitorResult:
        """Record a position sample and assess the threat it implies."""
        async with self._locked_session(session_id) as session:
            self._ensure_monitoring(session)
            now = self._clock()
            previous = session.last_location
            last_update = previous.timestamp if previous is not None else session.start_time

            current = location.model_copy(update={"timestamp": now})
            session.record_location(current, self._location_limit)

            off_route = distance_from_route(current, session.confirmed_route)
            session.deviation_history = track_deviation(
                session.deviation_history,
                current,
                off_route,
                now_ms=now,
                retention_ms=self._deviation_retention_ms,
            )

            assessment = assess_threat(
                current,
                session.confirmed_route,
                session.location_history,
                session.deviation_history,
                self._reference.high_risk_zones,
                location_enabled,
                last_update,
                now_ms=now,
            )
            logger.info(
                "monitor.location_updated",
                session_id=session_id,
                distance_from_route=round(off_route, 1),
                score=round(assessment.score, 3),
                level=assessment.level.value,
            )
            return await self._conclude(session, assessment, current, distance=off_route)

    async def location_disabled(self, session_id: str, last_known_location: Location | None = None) -> MonitorResult:
        """Assess a ride whose device just switched location services off.

        Without a fresh coordinate, the session's last known location is
        used.
        """
        async with self._locked_session(session_id) as session:
            self._ensure_monitoring(session)
            now = self._clock()
            previous = session.last_location
            last_update = previous.timestamp if previous is not None else session.start_time

            if last_known_location is not None:
                current: Location | None = last_known_location.model_copy(
                    update={"timestamp": now, "source": LocationSource.LAST_KNOWN},
                )
                session.record_location(current, self._location_limit)
            else:
                current = previous

            assessment = assess_threat(
                current,
                session.confirmed_route,
                session.location_history,
                session.deviation_history,
                self._reference.high_risk_zones,
                False,
                last_update,
                now_ms=now,
            )
            logger.warning(
                "monitor.location_disabled",
                session_id=session_id,
                score=round(assessment.score, 3),
                level=assessment.level.value,
            )
            return await self._conclude(session, assessment, current, warning=LOCATION_DISABLED_WARNING)

    async def network_loss(
        self,
        session_id: str,
        duration_ms: int,
        last_known_location: Location | None = None,
    ) -> MonitorResult:
        """Assess a connectivity gap of *duration_ms*.

        The live assessment is raised by up to ``NETWORK_LOSS_WEIGHT``,
        saturating after five minutes offline, and level and action are
        derived from the raised score.
        """
        async with self._locked_session(session_id) as session:
            self._ensure_monitoring(session)
            now = self._clock()
            current = last_known_location or session.last_location

            base = assess_threat(
                current,
                session.confirmed_route,
                session.location_history,
                session.deviation_history,
                self._reference.high_risk_zones,
                True,
                now - duration_ms,
                now_ms=now,
            )
            loss = min(max(duration_ms, 0) / NETWORK_LOSS_SATURATION_MS, 1.0)
            assessment = build_assessment(base.factors, now_ms=now, score=base.score + loss * NETWORK_LOSS_WEIGHT)
            logger.warning(
                "monitor.network_loss",
                session_id=session_id,
                duration_ms=duration_ms,
                score=round(assessment.score, 3),
                level=assessment.level.value,
            )
            return await self._conclude(session, assessment, current, warning=NETWORK_LOSS_WARNING)

    async def manual_emergency(self, session_id: str, location: Location | None = None) -> MonitorResult:
        """Panic trigger: escalate at maximum threat without scoring."""
        logger.warning("monitor.manual_emergency", session_id=session_id)
        return await self._run_synthetic(session_id, location, lambda now: panic_assessment(now_ms=now))

    # ------------------------------------------------------------------
    # Shared tail
    # ------------------------------------------------------------------

    async def _run_synthetic(
        self,
        session_id: str,
        location: Location | None,
        build: Callable[[int], ThreatAssessment],
    ) -> MonitorResult:
        """Record *location* and push an assessment that skipped scoring."""
        async with self._locked_session(session_id) as session:
            self._ensure_open(session)
            now = self._clock()
            current = location
            if current is not None:
                current = current.model_copy(update={"timestamp": now})
                session.record_location(current, self._location_limit)
            return await self._conclude(session, build(now), current)

    @staticmethod
    def _ensure_open(session: RideSession) -> None:
        if session.status.is_closed:
            raise SessionClosedError(session.id, session.status.value)

    @classmethod
    def _ensure_monitoring(cls, session: RideSession) -> None:
        """Position events need a confirmed route to measure against."""
        cls._ensure_open(session)
        if session.status == RideStatus.SETUP:
            raise RideNotStartedError(session.id)

    async def _conclude(
        self,
        session: RideSession,
        assessment: ThreatAssessment,
        location: Location | None,
        *,
        distance: float | None = None,
        warning: str | None = None,
    ) -> MonitorResult:
        """Append *assessment* to history and escalate when it calls for it.

        Must run inside the session's lock.
        """
        session.record_assessment(assessment, self._threat_limit)

        escalation = None
        if assessment.action.escalates:
            existing = await self._store.get_dispatch(session.dispatch_id) if session.dispatch_id else None
            dispatch, escalation = await self._escalation.escalate(session, assessment, location, existing)
            await self._store.put_dispatch(dispatch)

        return MonitorResult(
            threat_assessment=assessment,
            distance_from_route=distance,
            is_deviated=is_deviated(distance) if distance is not None else False,
            escalation=escalation,
            status=session.status,
            warning=warning,
        )
