"""Main API router combining all v1 route modules.

Aggregates all routers under the ``/api/v1`` prefix so the
FastAPI application only needs to include a single router.

Includes:
    * Health: liveness and readiness probes
    * Rides: create, confirm route, inspect, end
    * Monitor: location updates, disabled/network-loss events, panic
      trigger, dispatch lookup
    * Monitor testing: forced threat levels (non-production only)
"""

from __future__ import annotations

from fastapi import APIRouter

from config.settings import settings
from src.api.v1 import health, monitor, rides

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health.router)
api_router.include_router(rides.router)
api_router.include_router(monitor.router)

# -- Test-support sub-router -------------------------------------------------
if settings.test_endpoints_enabled:
    api_router.include_router(monitor.testing_router)
