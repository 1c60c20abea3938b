"""SafeRide FastAPI application entry point.

Creates the FastAPI app, configures middleware, includes routers, and
manages the lifecycle of the monitoring services (session store, route
provider, email notifier, escalation orchestrator, ride monitor).
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from config.settings import settings
from src.api.router import api_router

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            settings.log_level,
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of the SafeRide services.

    On startup:
      1. Initialise the session store (Redis with in-memory fallback)
      2. Load bundled reference data
      3. Initialise the route provider and email notifier
      4. Create the escalation orchestrator and ride monitor
      5. Wire the threat override when test endpoints are enabled
      6. Store everything on ``app.state``

    On shutdown:
      - Close the route provider's HTTP client and the session store.
    """
    _configure_logging()
    logger.info("app.startup", env=settings.env)

    app.state.start_time = time.time()

    # -- 1. Session store ---------------------------------------------------
    from src.services.session_store import SessionStore

    store = SessionStore(
        redis_url=settings.redis_url if settings.redis_url else None,
        ttl_seconds=settings.session_ttl_seconds,
        inmemory_max_size=settings.inmemory_max_sessions,
    )
    app.state.session_store = store
    logger.info("app.session_store_initialised")

    # -- 2. Reference data --------------------------------------------------
    from src.data.reference import ReferenceData, load_reference_data

    try:
        reference = load_reference_data()
    except Exception:
        logger.warning("app.reference_data_load_failed", exc_info=True)
        reference = ReferenceData()

    # -- 3. Route provider and notifier --------------------------------------
    from src.services.notifications import EmailNotifier
    from src.services.routing import OSRMRouteProvider

    route_provider = OSRMRouteProvider(
        settings.routing_base_url,
        timeout_seconds=settings.routing_timeout_seconds,
    )

    try:
        notifier = EmailNotifier(
            provider=settings.email_provider,
            gateway_url=settings.email_gateway_url,
            api_key=settings.email_api_key,
            sender=settings.email_from,
            timeout_seconds=settings.email_timeout_seconds,
        )
    except ValueError:
        logger.warning("app.email_provider_misconfigured_using_mock", exc_info=True)
        notifier = EmailNotifier(provider="mock", sender=settings.email_from)
    app.state.notifier = notifier
    logger.info("app.notifier_initialised", provider=notifier.provider_name)

    # -- 4. Escalation and monitor ------------------------------------------
    from src.services.escalation import EscalationOrchestrator
    from src.services.monitoring import RideMonitorService

    escalation = EscalationOrchestrator(notifier, rider_name=settings.rider_display_name)
    monitor = RideMonitorService(
        store,
        route_provider,
        escalation,
        reference,
        location_history_limit=settings.location_history_limit,
        threat_history_limit=settings.threat_history_limit,
        deviation_retention_ms=settings.deviation_retention_ms,
        route_alternatives=settings.route_alternatives,
    )
    app.state.monitor = monitor

    # -- 5. Threat override (non-production only) ---------------------------
    app.state.threat_override = None
    if settings.test_endpoints_enabled:
        from src.services.threat_override import ThreatOverrideService

        app.state.threat_override = ThreatOverrideService(monitor)
        logger.warning("app.threat_override_enabled")

    logger.info("app.startup_complete")

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown_start")

    await route_provider.close()
    await store.close()

    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SafeRide API",
    description=(
        "SafeRide -- passive passenger-safety monitoring for ride-hailing "
        "trips: route safety scoring, live threat assessment and silent "
        "dispatch to emergency contacts."
    ),
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- CORS middleware --------------------------------------------------------
# allow_credentials=True must not be combined with allow_origins=["*"].
if settings.is_production:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:8000", "http://127.0.0.1:8000"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS", "HEAD"],
        allow_headers=["Content-Type", "Accept", "Authorization"],
    )

# -- Include routers -------------------------------------------------------
app.include_router(api_router)


@app.get("/api", response_class=ORJSONResponse)
async def api_info() -> dict:
    """API information endpoint."""
    return {
        "name": "SafeRide API",
        "version": app.version,
        "docs": "/docs",
        "health": "/api/v1/health",
        "endpoints": {
            "rides": "/api/v1/rides",
            "monitor": "/api/v1/monitor",
            "health": "/api/v1/health",
        },
        "test_endpoints_enabled": settings.test_endpoints_enabled,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.main:app", host=settings.api_host, port=settings.api_port)
