"""Shared helpers for the v1 route modules."""

from __future__ import annotations

from typing import NoReturn

import structlog
from fastapi import HTTPException, Request

from src.models.errors import SessionStoreUnavailableError
from src.services.monitoring import RideMonitorService

logger = structlog.get_logger(__name__)

SERVICE_ERRORS = (LookupError, ValueError, SessionStoreUnavailableError)


def get_monitor(request: Request) -> RideMonitorService:
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is None:
        raise HTTPException(status_code=503, detail="Ride monitoring service not available")
    return monitor


def raise_http_error(exc: Exception) -> NoReturn:
    """Map a domain error onto the matching HTTP status.

    ``LookupError`` (unknown session, route or dispatch) becomes 404 and
    ``ValueError`` (invalid state change, closed ride) becomes 409.
    A session store that cannot be reached is a 503.
    """
    if isinstance(exc, SessionStoreUnavailableError):
        logger.error("api.session_store_unavailable", error=str(exc))
        raise HTTPException(status_code=503, detail="Session store unavailable") from exc
    if isinstance(exc, LookupError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    logger.error("api.unhandled_error", error=str(exc), exc_info=exc)
    raise HTTPException(status_code=500, detail="Internal error") from exc
