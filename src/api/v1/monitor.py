"""Live monitoring endpoints.

Every event endpoint returns a :class:`MonitorResult`: the threat
assessment, the rider's distance from the confirmed route where one was
computed, and the escalation outcome when the assessment triggered a
silent dispatch or emergency escalation.

The forced-threat-level endpoint lives on a separate router that the
application only mounts when test endpoints are enabled.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from src.api.deps import SERVICE_ERRORS, get_monitor, raise_http_error
from src.models.ride import Location, MonitorResult, SilentDispatch

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/monitor", tags=["monitor"])
testing_router = APIRouter(prefix="/monitor", tags=["monitor-testing"])


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class LocationUpdateRequest(BaseModel):
    location: Location
    location_enabled: bool = True


class LocationDisabledRequest(BaseModel):
    last_known_location: Location | None = None


class NetworkLossRequest(BaseModel):
    duration_ms: int = Field(..., ge=0, description="How long the device has been offline")
    last_known_location: Location | None = None


class EmergencyRequest(BaseModel):
    location: Location | None = None


class ForceThreatLevelRequest(BaseModel):
    forced_score: float = Field(..., ge=0.0, le=1.0)
    location: Location | None = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/{session_id}/location", response_model=MonitorResult)
async def update_location(session_id: str, body: LocationUpdateRequest, request: Request) -> MonitorResult:
    monitor = get_monitor(request)
    try:
        return await monitor.update_location(session_id, body.location, location_enabled=body.location_enabled)
    except SERVICE_ERRORS as exc:
        raise_http_error(exc)


@router.post("/{session_id}/location-disabled", response_model=MonitorResult)
async def location_disabled(
    session_id: str,
    request: Request,
    body: LocationDisabledRequest | None = None,
) -> MonitorResult:
    """Location services were switched off mid-ride."""
    monitor = get_monitor(request)
    last_known = body.last_known_location if body is not None else None
    try:
        return await monitor.location_disabled(session_id, last_known)
    except SERVICE_ERRORS as exc:
        raise_http_error(exc)


@router.post("/{session_id}/network-loss", response_model=MonitorResult)
async def network_loss(session_id: str, body: NetworkLossRequest, request: Request) -> MonitorResult:
    monitor = get_monitor(request)
    try:
        return await monitor.network_loss(session_id, body.duration_ms, body.last_known_location)
    except SERVICE_ERRORS as exc:
        raise_http_error(exc)


@router.post("/{session_id}/emergency", response_model=MonitorResult)
async def manual_emergency(
    session_id: str,
    request: Request,
    body: EmergencyRequest | None = None,
) -> MonitorResult:
    """Panic button: escalate immediately, bypassing scoring."""
    monitor = get_monitor(request)
    location = body.location if body is not None else None
    try:
        return await monitor.manual_emergency(session_id, location)
    except SERVICE_ERRORS as exc:
        raise_http_error(exc)


@router.get("/dispatch/{dispatch_id}", response_model=SilentDispatch)
async def get_dispatch(dispatch_id: str, request: Request) -> SilentDispatch:
    monitor = get_monitor(request)
    try:
        return await monitor.get_dispatch(dispatch_id)
    except SERVICE_ERRORS as exc:
        raise_http_error(exc)


@testing_router.post("/{session_id}/force-threat-level", response_model=MonitorResult)
async def force_threat_level(session_id: str, body: ForceThreatLevelRequest, request: Request) -> MonitorResult:
    """Pin the threat score to exercise each threshold end to end."""
    override = getattr(request.app.state, "threat_override", None)
    if override is None:
        raise HTTPException(status_code=503, detail="Threat override not available")
    try:
        return await override.force_threat_level(session_id, body.forced_score, body.location)
    except SERVICE_ERRORS as exc:
        raise_http_error(exc)
