"""Silent dispatch and emergency escalation.

When an assessment's action is ``silent_dispatch`` or
``emergency_escalation`` the orchestrator:

1. Opens the ride's :class:`SilentDispatch` on first escalation, with an
   evidence packet snapshotting GPS, deviation and threat history.
   Later escalations reuse that record and append a live update.
2. Emails every emergency contact not yet notified who has an email
   address. Contacts are notified concurrently, but each
   (session, contact) pair is serialised so nobody is alerted twice.
   A failed send becomes an ``EMAIL_FAILED`` action entry, never an
   exception.
3. For ``emergency_escalation``, marks emergency services as notified.
   This is simulated: no call is placed.
4. Moves the ride to ``emergency``, which is terminal.

The orchestrator is store-agnostic: the caller loads the ride and any
existing dispatch, and persists both afterwards.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import Callable

import structlog

from src.models.enums import RideStatus
from src.models.ride import (
    EmergencyContact,
    EscalationResult,
    EvidencePacket,
    Location,
    RideSession,
    SilentDispatch,
    ThreatAssessment,
)
from src.services.clock import now_ms as _system_now_ms
from src.services.notifications import EmailSender, SendResult, render_alert_email

logger = structlog.get_logger(__name__)

ACTION_TRACKING_STARTED = "LIVE_LOCATION_TRACKING_STARTED"
ACTION_LIVE_UPDATE = "LIVE_LOCATION_UPDATE_RECORDED"
ACTION_EMERGENCY_SERVICES = "EMERGENCY_SERVICES_112_NOTIFIED"

def build_evidence_packet(session: RideSession, assessment: ThreatAssessment, *, now_ms: int) -> EvidencePacket:
    """Snapshot the ride's history at the moment of escalation."""
    return EvidencePacket(
        session_id=session.id,
        timestamp=now_ms,
        gps_history=tuple(session.location_history),
        deviation_points=tuple(p.model_copy() for p in session.deviation_history),
        threat_assessments=tuple(session.threat_history),
        escalation_reason=f"Threat level: {assessment.level.value}, Score: {assessment.score:.2f}",
        vehicle_info=session.vehicle_info,
    )

class EscalationOrchestrator:
    """Turns an escalating assessment into dispatch actions."""

    __slots__ = ("_clock", "_contact_locks", "_notifier", "_rider_name")

    def __init__(
        self,
        notifier: EmailSender,
        *,
        rider_name: str = "SafeRide User",
        clock: Callable[[], int] = _system_now_ms,
    ) -> None:
        self._notifier = notifier
        self._rider_name = rider_name
        self._clock = clock
        # Entries vanish once no escalation holds the lock.
        self._contact_locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def escalate(
        self,
        session: RideSession,
        assessment: ThreatAssessment,
        location: Location | None,
        existing_dispatch: SilentDispatch | None = None,
    ) -> tuple[SilentDispatch, EscalationResult]:
        """Run the escalation path for *assessment*.

        Mutates *session* (contacts, status, ``dispatch_id``) and returns
        the dispatch record to persist alongside the result.

        Raises
        ------
        ValueError
            If the assessment's action does not call for escalation.
        """
        if not assessment.action.escalates:
            raise ValueError(f"Action '{assessment.action.value}' does not escalate")

        now = self._clock()
        location = location or session.last_location
        actions: list[str] = []
        log = logger.bind(session_id=session.id, action=assessment.action.value, score=assessment.score)

        if existing_dispatch is None:
            dispatch = SilentDispatch(
                session_id=session.id,
                triggered_at=now,
                threat_score=assessment.score,
                last_known_location=location,
                evidence_packet=build_evidence_packet(session, assessment, now_ms=now),
            )
            actions.append(ACTION_TRACKING_STARTED)
            log.warning("escalation.dispatch_opened", dispatch_id=dispatch.id)
        else:
            dispatch = existing_dispatch
            dispatch.threat_score = max(dispatch.threat_score, assessment.score)
            actions.append(ACTION_LIVE_UPDATE)

        if location is not None:
            dispatch.last_known_location = location
            dispatch.live_updates.append(location)

        newly_notified = await self._notify_contacts(session, assessment, location, actions)
        if newly_notified:
            packet = dispatch.evidence_packet
            dispatch.evidence_packet = packet.model_copy(
                update={
                    "emergency_contacts_notified": packet.emergency_contacts_notified
                    + tuple(c.model_copy() for c in newly_notified),
                },
            )
        dispatch.contacts_notified = [c.id for c in session.emergency_contacts if c.notified]

        if assessment.action.notifies_emergency_services and not dispatch.emergency_services_notified:
            dispatch.emergency_services_notified = True
            actions.append(ACTION_EMERGENCY_SERVICES)
            log.warning(
                "escalation.emergency_services_simulated",
                dispatch_id=dispatch.id,
                lat=location.lat if location else None,
                lng=location.lng if location else None,
                license_plate=session.vehicle_info.license_plate if session.vehicle_info else None,
            )

        session.transition_to(RideStatus.EMERGENCY)
        session.dispatch_id = dispatch.id

        log.info(
            "escalation.completed",
            dispatch_id=dispatch.id,
            actions=len(actions),
            contacts_notified=len(dispatch.contacts_notified),
        )

        return dispatch, EscalationResult(
            dispatch_id=dispatch.id,
            actions=actions,
            evidence_packet=dispatch.evidence_packet,
            emergency_services_notified=dispatch.emergency_services_notified,
        )

    # ------------------------------------------------------------------
    # Contact notification
    # ------------------------------------------------------------------

    async def _notify_contacts(
        self,
        session: RideSession,
        assessment: ThreatAssessment,
        location: Location | None,
        actions: list[str],
    ) -> list[EmergencyContact]:
        pending = [c for c in session.emergency_contacts if not c.notified and c.email]
        if not pending:
            return []

        rider_name = (
            session.vehicle_info.driver_name
            if session.vehicle_info and session.vehicle_info.driver_name
            else self._rider_name
        )
        outcomes = await asyncio.gather(*(
            self._notify_contact(session, contact, assessment, location, rider_name)
            for contact in pending
        ))

        notified: list[EmergencyContact] = []
        for entry, contact in outcomes:
            if entry is None:
                continue
            actions.append(entry)
            if contact is not None:
                notified.append(contact)
        return notified

    async def _notify_contact(
        self,
        session: RideSession,
        contact: EmergencyContact,
        assessment: ThreatAssessment,
        location: Location | None,
        rider_name: str,
    ) -> tuple[str | None, EmergencyContact | None]:
        session_id = session.id
        lock = self._contact_locks.setdefault((session_id, contact.id), asyncio.Lock())
        async with lock:
            if contact.notified:
                return None, None

            try:
                message = render_alert_email(
                    contact=contact,
                    rider_name=rider_name,
                    emergency=assessment.action.notifies_emergency_services,
                    threat_score=assessment.score,
                    location=location,
                    vehicle_info=session.vehicle_info,
                    now_ms=self._clock(),
                )
                result = await self._notifier.send(message)
            except Exception as exc:
                result = SendResult(success=False, error=str(exc) or type(exc).__name__)
                logger.warning("escalation.send_raised", session_id=session_id, contact_id=contact.id, exc_info=True)

            if not result.success:
                logger.warning(
                    "escalation.email_failed",
                    session_id=session_id,
                    contact_id=contact.id,
                    error=result.error,
                )
                return f"EMAIL_FAILED: {contact.name} - {result.error}", None

            contact.mark_notified(self._clock())
            logger.info("escalation.contact_notified", session_id=session_id, contact_id=contact.id)
            return f"EMAIL_SENT: {contact.name} ({contact.email})", contact
