"""Health check endpoints for the SafeRide API v1.

Provides liveness and readiness probes for container deployments.  The
readiness check pings the session store backend and verifies that the
monitoring service and its reference data are loaded.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    version: str
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    """Readiness check response with individual component statuses."""

    status: str
    checks: dict[str, str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.

    Returns 200 if the application process is running and able to
    handle requests.  Does *not* check downstream dependencies.
    """
    start_time: float = getattr(request.app.state, "start_time", time.time())
    uptime = time.time() - start_time

    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(uptime, 2),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness probe.

    The load balancer only routes traffic to instances whose store and
    monitor are initialised.
    """
    checks: dict[str, str] = {}
    all_ok = True

    # -- Session store -----------------------------------------------------
    store = getattr(request.app.state, "session_store", None)
    if store is not None:
        try:
            checks["session_store_backend"] = await store.ping()
            checks["session_store"] = "ok"
        except Exception as exc:
            checks["session_store"] = f"error: {exc!s}"
            all_ok = False
    else:
        checks["session_store"] = "not_configured"
        all_ok = False

    # -- Monitor and reference data ----------------------------------------
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is not None:
        zones = len(monitor.reference.high_risk_zones)
        checks["monitor"] = "ok"
        checks["reference_data"] = f"ok ({zones} zones loaded)" if zones else "no_data"
    else:
        checks["monitor"] = "not_initialised"
        all_ok = False

    # -- Email -------------------------------------------------------------
    notifier = getattr(request.app.state, "notifier", None)
    checks["email"] = notifier.provider_name if notifier is not None else "not_configured"

    status = "ready" if all_ok else "degraded"

    logger.info("health.readiness_check", status=status, checks=checks)

    return ReadinessResponse(status=status, checks=checks)
