"""Bundled safety reference data: high-risk zones, community reports and
default emergency contacts.

Timestamps in the JSON are stored as ages (milliseconds before load time)
so the data never goes stale; :func:`load_reference_data` converts them to
absolute epoch milliseconds against the supplied clock.
"""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from src.models.enums import LocationSource
from src.models.ride import CommunityReport, EmergencyContact, HighRiskZone, Location
from src.services.clock import now_ms as _system_now_ms

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_DATA_DIR: Path = Path(__file__).resolve().parent / "cities"
_DEFAULT_REFERENCE_PATH: Path = _DATA_DIR / "delhi.json"


class ReferenceData(BaseModel):
    high_risk_zones: list[HighRiskZone] = Field(default_factory=list)
    community_reports: list[CommunityReport] = Field(default_factory=list)
    emergency_contacts: list[EmergencyContact] = Field(default_factory=list)

    def fresh_contacts(self) -> list[EmergencyContact]:
        """Un-notified copies of the default contacts for a new ride."""
        return [
            c.model_copy(update={"notified": False, "notified_at": None})
            for c in self.emergency_contacts
        ]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_reference_data(path: Path | None = None, *, now_ms: int | None = None) -> ReferenceData:
    """Load zones, reports and contacts from a JSON file.

    Parameters
    ----------
    path:
        Path to the JSON file.  Defaults to the bundled ``delhi.json``.
    now_ms:
        Load time used to resolve relative ages.  Defaults to the
        current wall clock.

    Raises
    ------
    FileNotFoundError
        If the JSON file does not exist.
    json.JSONDecodeError
        If the JSON is malformed.
    """
    file_path = path or _DEFAULT_REFERENCE_PATH
    if not file_path.exists():
        raise FileNotFoundError(f"Reference data file not found: {file_path}")

    with file_path.open("r", encoding="utf-8") as f:
        raw: dict = json.load(f)

    now = _system_now_ms() if now_ms is None else now_ms
    data = ReferenceData(
        high_risk_zones=_parse_all(raw.get("high_risk_zones", []), _parse_zone, now),
        community_reports=_parse_all(raw.get("community_reports", []), _parse_report, now),
        emergency_contacts=_parse_all(raw.get("emergency_contacts", []), _parse_contact, now),
    )

    logger.info(
        "reference.loaded",
        zones=len(data.high_risk_zones),
        reports=len(data.community_reports),
        contacts=len(data.emergency_contacts),
        source=str(file_path),
    )
    return data


def _parse_all(items: list[dict], parse, now: int) -> list:
    parsed = []
    for item in items:
        try:
            parsed.append(parse(item, now))
        except Exception:
            logger.warning("reference.parse_error", item_id=item.get("id", "unknown"), exc_info=True)
    return parsed


def _parse_location(raw: dict, timestamp: int = 0) -> Location:
    return Location(
        lat=raw["lat"],
        lng=raw["lng"],
        timestamp=timestamp,
        source=LocationSource(raw.get("source", "gps")),
    )


def _parse_zone(raw: dict, now: int) -> HighRiskZone:
    return HighRiskZone(
        id=raw["id"],
        center=_parse_location(raw["center"]),
        radius=raw["radius"],
        risk_level=raw["risk_level"],
        reason=raw.get("reason", ""),
        report_count=raw.get("report_count", 0),
        last_reported=now - raw.get("last_reported_age_ms", 0),
    )


def _parse_report(raw: dict, now: int) -> CommunityReport:
    timestamp = now - raw.get("age_ms", 0)
    return CommunityReport(
        id=raw["id"],
        reporter_id=raw["reporter_id"],
        reporter_trust_score=raw["reporter_trust_score"],
        location=_parse_location(raw["location"], timestamp),
        type=raw["type"],
        description=raw.get("description", ""),
        timestamp=timestamp,
        verification_count=raw.get("verification_count", 0),
        is_verified=raw.get("is_verified", False),
    )


def _parse_contact(raw: dict, now: int) -> EmergencyContact:
    return EmergencyContact(
        id=raw["id"],
        name=raw["name"],
        phone=raw.get("phone", ""),
        email=raw.get("email", ""),
        relationship=raw.get("relationship", ""),
    )
