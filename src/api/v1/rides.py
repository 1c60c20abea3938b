"""Ride lifecycle endpoints: create, confirm route, inspect, end."""

from __future__ import annotations

from typing import Literal

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from src.api.deps import SERVICE_ERRORS, get_monitor, raise_http_error
from src.models.ride import EmergencyContact, Location, RideSession, RideSetup, VehicleInfo

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/rides", tags=["rides"])


class CreateRideRequest(BaseModel):
    source: Location
    destination: Location
    vehicle_info: VehicleInfo | None = None
    user_id: str = Field(default="anonymous", max_length=128)
    emergency_contacts: list[EmergencyContact] | None = Field(
        default=None,
        description="Overrides the default emergency contacts",
    )


class ConfirmRouteRequest(BaseModel):
    route_id: str = Field(..., min_length=1)


class EndRideRequest(BaseModel):
    reason: Literal["completed", "cancelled"] = "completed"


@router.post("", response_model=RideSetup)
async def create_ride(body: CreateRideRequest, request: Request) -> RideSetup:
    """Plan and score candidate routes and open a ride in ``setup``.

    Routes come back safest first; the safest is pre-selected as the
    confirmed route.  If road routing is unavailable a straight-line
    route is returned with a ``warning``.
    """
    monitor = get_monitor(request)
    try:
        return await monitor.create_session(
            body.source,
            body.destination,
            vehicle_info=body.vehicle_info,
            user_id=body.user_id,
            emergency_contacts=body.emergency_contacts,
        )
    except SERVICE_ERRORS as exc:
        raise_http_error(exc)


@router.post("/{session_id}/confirm", response_model=RideSession)
async def confirm_route(session_id: str, body: ConfirmRouteRequest, request: Request) -> RideSession:
    """Lock in the chosen route as the monitoring baseline and start the ride."""
    monitor = get_monitor(request)
    try:
        return await monitor.confirm_route(session_id, body.route_id)
    except SERVICE_ERRORS as exc:
        raise_http_error(exc)


@router.get("/{session_id}", response_model=RideSession)
async def get_ride(session_id: str, request: Request) -> RideSession:
    monitor = get_monitor(request)
    try:
        return await monitor.get_session(session_id)
    except SERVICE_ERRORS as exc:
        raise_http_error(exc)


@router.post("/{session_id}/end", response_model=RideSession)
async def end_ride(session_id: str, request: Request, body: EndRideRequest | None = None) -> RideSession:
    """Close the ride.  A ride in ``emergency`` is left as is."""
    monitor = get_monitor(request)
    reason = body.reason if body is not None else "completed"
    try:
        return await monitor.end_ride(session_id, reason)
    except SERVICE_ERRORS as exc:
        raise_http_error(exc)
