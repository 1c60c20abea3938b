"""Tests for the ride monitoring service.

The route provider is an AsyncMock, the notifier always succeeds, and the
clock is advanced by hand, so every assessment is deterministic.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.data.reference import ReferenceData
from src.models.enums import LocationSource, RideStatus, ThreatAction, ThreatLevel
from src.models.errors import (
    DispatchNotFoundError,
    RideNotStartedError,
    RouteLockedError,
    RouteNotFoundError,
    SessionClosedError,
    SessionNotFoundError,
)
from src.models.ride import EmergencyContact, HighRiskZone, Location, RouteCandidate
from src.services.escalation import ACTION_LIVE_UPDATE, EscalationOrchestrator
from src.services.monitoring import (
    FALLBACK_ROUTING_WARNING,
    LOCATION_DISABLED_WARNING,
    NETWORK_LOSS_WARNING,
    RideMonitorService,
)
from src.services.notifications import SendResult
from src.services.routing import RoutingError
from src.services.session_store import SessionStore
from src.services.threat_override import ThreatOverrideService

NOW = 1_700_000_000_000

START = Location(lat=28.60, lng=77.20)
MID = Location(lat=28.61, lng=77.20)
END = Location(lat=28.62, lng=77.20)
DETOUR = Location(lat=28.61, lng=77.23)

DIRECT = RouteCandidate(waypoints=(START, MID, END), distance_meters=2_200.0, duration_minutes=6.0)
SCENIC = RouteCandidate(waypoints=(START, DETOUR, END), distance_meters=6_400.0, duration_minutes=14.0)


class _Clock:
    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def _reference(zones: list[HighRiskZone] | None = None) -> ReferenceData:
    return ReferenceData(
        high_risk_zones=zones or [],
        emergency_contacts=[
            EmergencyContact(id="ec-1", name="Asha", email="asha@example.com"),
            EmergencyContact(id="ec-2", name="Vikram", email="vikram@example.com"),
        ],
    )


@pytest.fixture
def clock() -> _Clock:
    return _Clock(NOW)


@pytest.fixture
def provider() -> AsyncMock:
    provider = AsyncMock()
    provider.get_routes.return_value = [DIRECT]
    return provider


@pytest.fixture
def notifier() -> AsyncMock:
    notifier = AsyncMock()
    notifier.send.return_value = SendResult(success=True)
    return notifier


@pytest.fixture
def store() -> SessionStore:
    return SessionStore(redis_url=None)


def _monitor(
    store: SessionStore,
    provider: AsyncMock,
    notifier: AsyncMock,
    clock: _Clock,
    reference: ReferenceData | None = None,
) -> RideMonitorService:
    return RideMonitorService(
        store,
        provider,
        EscalationOrchestrator(notifier, clock=clock),
        reference or _reference(),
        clock=clock,
    )


@pytest.fixture
def monitor(store: SessionStore, provider: AsyncMock, notifier: AsyncMock, clock: _Clock) -> RideMonitorService:
    return _monitor(store, provider, notifier, clock)


async def _active_ride(monitor: RideMonitorService) -> str:
    setup = await monitor.create_session(START, END)
    session = setup.session
    await monitor.confirm_route(session.id, session.confirmed_route.id)
    return session.id


# ---------------------------------------------------------------------------
# Ride setup
# ---------------------------------------------------------------------------


class TestCreateSession:
    async def test_opens_ride_in_setup(self, monitor: RideMonitorService, store: SessionStore) -> None:
        setup = await monitor.create_session(START, END, user_id="rider-7")
        session = setup.session

        assert setup.warning is None
        assert session.status == RideStatus.SETUP
        assert session.user_id == "rider-7"
        assert session.start_time == NOW
        assert session.source.timestamp == NOW
        assert session.location_history == [session.source]
        assert await store.get(session.id) == session

    async def test_routes_requested_with_alternatives(self, monitor: RideMonitorService, provider: AsyncMock) -> None:
        await monitor.create_session(START, END)
        provider.get_routes.assert_awaited_once()
        assert provider.get_routes.await_args.args[2] == 3

    async def test_routes_sorted_safest_first(
        self, store: SessionStore, provider: AsyncMock, notifier: AsyncMock, clock: _Clock,
    ) -> None:
        zone = HighRiskZone(id="hrz-mid", center=MID, radius=500.0, risk_level=1.0)
        monitor = _monitor(store, provider, notifier, clock, _reference([zone]))
        provider.get_routes.return_value = [DIRECT, SCENIC]

        setup = await monitor.create_session(START, END)
        routes = setup.session.alternative_routes

        assert [r.id for r in routes] == [f"route-1-{NOW}", f"route-0-{NOW}"]
        assert routes[0].safety_score == pytest.approx(1.0)
        assert routes[1].safety_score < routes[0].safety_score
        assert routes[1].high_risk_zones == (zone,)
        assert setup.session.confirmed_route == routes[0]
        assert setup.high_risk_zones == [zone]

    async def test_provider_failure_falls_back_to_straight_line(
        self, monitor: RideMonitorService, provider: AsyncMock,
    ) -> None:
        provider.get_routes.side_effect = RoutingError("osrm down")

        setup = await monitor.create_session(START, END)
        routes = setup.session.alternative_routes

        assert setup.warning == FALLBACK_ROUTING_WARNING
        assert len(routes) == 1
        assert len(routes[0].waypoints) == 2
        assert routes[0].safety_score == 0.5

    async def test_empty_provider_result_falls_back(self, monitor: RideMonitorService, provider: AsyncMock) -> None:
        provider.get_routes.return_value = []
        setup = await monitor.create_session(START, END)
        assert setup.warning == FALLBACK_ROUTING_WARNING

    async def test_default_contacts_come_from_reference(self, monitor: RideMonitorService) -> None:
        setup = await monitor.create_session(START, END)
        assert [c.id for c in setup.session.emergency_contacts] == ["ec-1", "ec-2"]
        assert not any(c.notified for c in setup.session.emergency_contacts)

    async def test_explicit_contacts_override_defaults(self, monitor: RideMonitorService) -> None:
        mine = [EmergencyContact(id="me-1", name="Sis", email="sis@example.com")]
        setup = await monitor.create_session(START, END, emergency_contacts=mine)
        assert [c.id for c in setup.session.emergency_contacts] == ["me-1"]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestConfirmRoute:
    async def test_confirm_activates_ride(self, monitor: RideMonitorService, provider: AsyncMock) -> None:
        provider.get_routes.return_value = [DIRECT, SCENIC]
        setup = await monitor.create_session(START, END)
        chosen = setup.session.alternative_routes[1]

        session = await monitor.confirm_route(setup.session.id, chosen.id)

        assert session.status == RideStatus.ACTIVE
        assert session.confirmed_route == chosen

    async def test_unknown_route(self, monitor: RideMonitorService) -> None:
        setup = await monitor.create_session(START, END)
        with pytest.raises(RouteNotFoundError):
            await monitor.confirm_route(setup.session.id, "route-nope")

    async def test_unknown_session(self, monitor: RideMonitorService) -> None:
        with pytest.raises(SessionNotFoundError):
            await monitor.confirm_route("ride-nope", "route-0")

    async def test_reconfirming_same_route_is_harmless(self, monitor: RideMonitorService) -> None:
        session_id = await _active_ride(monitor)
        session = await monitor.get_session(session_id)

        again = await monitor.confirm_route(session_id, session.confirmed_route.id)

        assert again.status == RideStatus.ACTIVE
        assert again.confirmed_route == session.confirmed_route

    async def test_switching_route_mid_ride_is_rejected(
        self, monitor: RideMonitorService, provider: AsyncMock,
    ) -> None:
        provider.get_routes.return_value = [DIRECT, SCENIC]
        setup = await monitor.create_session(START, END)
        first, second = setup.session.alternative_routes
        await monitor.confirm_route(setup.session.id, first.id)

        with pytest.raises(RouteLockedError):
            await monitor.confirm_route(setup.session.id, second.id)

        session = await monitor.get_session(setup.session.id)
        assert session.confirmed_route == first


class TestEndRide:
    async def test_complete(self, monitor: RideMonitorService) -> None:
        session_id = await _active_ride(monitor)
        session = await monitor.end_ride(session_id)
        assert session.status == RideStatus.COMPLETED

    async def test_cancel_during_setup(self, monitor: RideMonitorService) -> None:
        setup = await monitor.create_session(START, END)
        session = await monitor.end_ride(setup.session.id, "cancelled")
        assert session.status == RideStatus.CANCELLED

    async def test_emergency_ride_stays_in_emergency(self, monitor: RideMonitorService) -> None:
        session_id = await _active_ride(monitor)
        await monitor.manual_emergency(session_id)

        session = await monitor.end_ride(session_id)

        assert session.status == RideStatus.EMERGENCY

    async def test_events_after_end_are_rejected(self, monitor: RideMonitorService) -> None:
        session_id = await _active_ride(monitor)
        await monitor.end_ride(session_id)

        with pytest.raises(SessionClosedError):
            await monitor.update_location(session_id, MID)
        with pytest.raises(SessionClosedError):
            await monitor.manual_emergency(session_id)

    async def test_finished_rides_leave_no_locks_behind(self, monitor: RideMonitorService) -> None:
        for index in range(10):
            session_id = await _active_ride(monitor)
            if index % 2:
                await monitor.manual_emergency(session_id)
            await monitor.end_ride(session_id)

        assert len(monitor._locks) == 0
        assert len(monitor._escalation._contact_locks) == 0


class TestSetupRide:
    async def test_position_events_need_confirmed_route(self, monitor: RideMonitorService) -> None:
        setup = await monitor.create_session(START, END)
        session_id = setup.session.id

        with pytest.raises(RideNotStartedError):
            await monitor.update_location(session_id, DETOUR)
        with pytest.raises(RideNotStartedError):
            await monitor.location_disabled(session_id)
        with pytest.raises(RideNotStartedError):
            await monitor.network_loss(session_id, 60_000)

    async def test_rejected_sample_leaves_no_deviation(self, monitor: RideMonitorService, provider: AsyncMock) -> None:
        provider.get_routes.return_value = [DIRECT, SCENIC]
        setup = await monitor.create_session(START, END)
        session_id = setup.session.id
        scenic = next(r for r in setup.session.alternative_routes if DETOUR in r.waypoints)

        with pytest.raises(RideNotStartedError):
            await monitor.update_location(session_id, DETOUR)
        session = await monitor.confirm_route(session_id, scenic.id)

        assert session.deviation_history == []
        assert session.threat_history == []

    async def test_panic_allowed_before_confirmation(self, monitor: RideMonitorService) -> None:
        setup = await monitor.create_session(START, END)

        result = await monitor.manual_emergency(setup.session.id)

        assert result.status == RideStatus.EMERGENCY


# ---------------------------------------------------------------------------
# Monitoring events
# ---------------------------------------------------------------------------


class TestUpdateLocation:
    async def test_on_route_sample_is_safe(self, monitor: RideMonitorService, clock: _Clock) -> None:
        session_id = await _active_ride(monitor)
        clock.advance(10_000)

        result = await monitor.update_location(session_id, Location(lat=28.601, lng=77.20))

        assert result.threat_assessment.level == ThreatLevel.SAFE
        assert result.threat_assessment.action == ThreatAction.NONE
        assert result.distance_from_route == pytest.approx(0.0, abs=1.0)
        assert result.is_deviated is False
        assert result.escalation is None
        assert result.status == RideStatus.ACTIVE

    async def test_sample_is_stamped_with_server_time(self, monitor: RideMonitorService, clock: _Clock) -> None:
        session_id = await _active_ride(monitor)
        clock.advance(10_000)

        await monitor.update_location(session_id, Location(lat=28.601, lng=77.20, timestamp=42))

        session = await monitor.get_session(session_id)
        assert session.last_location.timestamp == NOW + 10_000
        assert len(session.threat_history) == 1

    async def test_off_route_sample_is_tracked(self, monitor: RideMonitorService, clock: _Clock) -> None:
        session_id = await _active_ride(monitor)
        clock.advance(10_000)

        result = await monitor.update_location(session_id, Location(lat=28.61, lng=77.21))

        assert result.is_deviated is True
        assert result.distance_from_route > 900
        assert result.threat_assessment.factors.route_deviation > 0
        assert result.threat_assessment.level == ThreatLevel.LOW
        session = await monitor.get_session(session_id)
        assert len(session.deviation_history) == 1

    async def test_concurrent_updates_are_all_recorded(self, monitor: RideMonitorService, clock: _Clock) -> None:
        session_id = await _active_ride(monitor)
        clock.advance(10_000)

        await asyncio.gather(
            monitor.update_location(session_id, Location(lat=28.601, lng=77.20)),
            monitor.update_location(session_id, Location(lat=28.602, lng=77.20)),
            monitor.update_location(session_id, Location(lat=28.603, lng=77.20)),
        )

        session = await monitor.get_session(session_id)
        assert len(session.location_history) == 4
        assert len(session.threat_history) == 3

    async def test_unknown_session(self, monitor: RideMonitorService) -> None:
        with pytest.raises(SessionNotFoundError):
            await monitor.update_location("ride-nope", MID)


class TestLocationDisabled:
    async def test_uses_previous_location(self, monitor: RideMonitorService, clock: _Clock) -> None:
        session_id = await _active_ride(monitor)
        clock.advance(10_000)

        result = await monitor.location_disabled(session_id)

        assert result.warning == LOCATION_DISABLED_WARNING
        assert result.threat_assessment.factors.location_disabled == 1.0
        assert result.threat_assessment.score == pytest.approx(0.1)
        session = await monitor.get_session(session_id)
        assert len(session.location_history) == 1

    async def test_records_last_known_location(self, monitor: RideMonitorService, clock: _Clock) -> None:
        session_id = await _active_ride(monitor)
        clock.advance(10_000)

        await monitor.location_disabled(session_id, Location(lat=28.601, lng=77.20))

        session = await monitor.get_session(session_id)
        assert session.last_location.source is LocationSource.LAST_KNOWN
        assert session.last_location.timestamp == NOW + 10_000


class TestNetworkLoss:
    async def test_gap_raises_score(self, monitor: RideMonitorService, clock: _Clock) -> None:
        session_id = await _active_ride(monitor)
        clock.advance(300_000)

        result = await monitor.network_loss(session_id, 300_000)

        assessment = result.threat_assessment
        assert result.warning == NETWORK_LOSS_WARNING
        assert assessment.factors.location_disabled == pytest.approx(0.8)
        assert assessment.score == pytest.approx(0.08 + 0.2)
        assert assessment.level == ThreatLevel.LOW

    async def test_short_gap_adds_proportionally(self, monitor: RideMonitorService, clock: _Clock) -> None:
        session_id = await _active_ride(monitor)
        clock.advance(10_000)

        result = await monitor.network_loss(session_id, 15_000)

        assert result.threat_assessment.score == pytest.approx(0.2 * 15_000 / 300_000)
        assert result.threat_assessment.level == ThreatLevel.SAFE


class TestEscalation:
    async def test_manual_emergency_opens_dispatch(
        self, monitor: RideMonitorService, notifier: AsyncMock,
    ) -> None:
        session_id = await _active_ride(monitor)

        result = await monitor.manual_emergency(session_id, Location(lat=28.605, lng=77.20))

        assert result.status == RideStatus.EMERGENCY
        assert result.threat_assessment.score == 1.0
        assert result.escalation is not None
        assert result.escalation.emergency_services_notified is True
        assert notifier.send.await_count == 2

        dispatch = await monitor.get_dispatch(result.escalation.dispatch_id)
        assert dispatch.session_id == session_id
        assert dispatch.contacts_notified == ["ec-1", "ec-2"]

    async def test_second_escalation_reuses_dispatch(
        self, monitor: RideMonitorService, notifier: AsyncMock,
    ) -> None:
        session_id = await _active_ride(monitor)
        first = await monitor.manual_emergency(session_id)

        second = await monitor.manual_emergency(session_id, Location(lat=28.606, lng=77.20))

        assert second.escalation.dispatch_id == first.escalation.dispatch_id
        assert second.escalation.actions == [ACTION_LIVE_UPDATE]
        assert notifier.send.await_count == 2
        dispatch = await monitor.get_dispatch(first.escalation.dispatch_id)
        assert len(dispatch.live_updates) == 2

    async def test_emergency_ride_keeps_monitoring(self, monitor: RideMonitorService, clock: _Clock) -> None:
        session_id = await _active_ride(monitor)
        await monitor.manual_emergency(session_id)
        clock.advance(10_000)

        result = await monitor.update_location(session_id, Location(lat=28.601, lng=77.20))

        assert result.status == RideStatus.EMERGENCY

    async def test_forced_silent_dispatch(self, monitor: RideMonitorService) -> None:
        session_id = await _active_ride(monitor)
        override = ThreatOverrideService(monitor)

        result = await override.force_threat_level(session_id, 0.75)

        assert result.threat_assessment.level == ThreatLevel.HIGH
        assert result.threat_assessment.action == ThreatAction.SILENT_DISPATCH
        assert result.escalation is not None
        assert result.escalation.emergency_services_notified is False

    async def test_forced_low_score_does_not_escalate(self, monitor: RideMonitorService) -> None:
        session_id = await _active_ride(monitor)
        result = await ThreatOverrideService(monitor).force_threat_level(session_id, 0.3)
        assert result.escalation is None
        assert result.status == RideStatus.ACTIVE

    async def test_unknown_dispatch(self, monitor: RideMonitorService) -> None:
        with pytest.raises(DispatchNotFoundError):
            await monitor.get_dispatch("dispatch-nope")
