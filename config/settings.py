"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. All keys use the
``SAFERIDE_`` prefix; Redis keeps its canonical ``REDIS_URL`` name via
``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the SafeRide monitoring service.

    Environment variables are loaded from a ``.env`` file when present.
    """

    model_config = SettingsConfigDict(
        env_prefix="SAFERIDE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── API ────────────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = ""  # comma-separated, production only

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"

    # ── Session store ──────────────────────────────────────────────────
    redis_url: str = Field(default="", validation_alias="REDIS_URL")
    session_ttl_seconds: int = 86_400  # 1 day
    inmemory_max_sessions: int = 10_000

    # ── Routing provider (OSRM-compatible) ─────────────────────────────
    routing_base_url: str = "https://router.project-osrm.org"
    routing_timeout_seconds: float = 10.0
    route_alternatives: int = Field(default=3, ge=1, le=5)

    # ── Email gateway ──────────────────────────────────────────────────
    email_provider: Literal["mock", "http"] = "mock"
    email_gateway_url: str = ""
    email_api_key: str = ""
    email_from: str = "SafeRide Alerts <alerts@saferide.local>"
    email_timeout_seconds: float = 10.0

    # ── Monitoring ─────────────────────────────────────────────────────
    location_history_limit: int = Field(default=100, ge=2)
    threat_history_limit: int = Field(default=50, ge=1)
    deviation_retention_ms: int = 600_000  # 10 minutes
    rider_display_name: str = "SafeRide User"
    enable_test_endpoints: bool = True

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def test_endpoints_enabled(self) -> bool:
        """Forced threat levels are never exposed in production."""
        return self.enable_test_endpoints and not self.is_production


# Module-level singleton; import ``settings`` everywhere.
settings = Settings()
