"""Tests for the bundled reference data loader."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from src.data.reference import ReferenceData, load_reference_data
from src.models.enums import ReportType
from src.models.ride import EmergencyContact

NOW = 1_700_000_000_000


class TestBundledData:
    def test_loads_all_sections(self) -> None:
        data = load_reference_data(now_ms=NOW)
        assert [z.id for z in data.high_risk_zones] == ["hrz-1", "hrz-2", "hrz-3", "hrz-4"]
        assert [r.id for r in data.community_reports] == ["cr-1", "cr-2", "cr-3"]
        assert [c.id for c in data.emergency_contacts] == ["ec-1", "ec-2", "ec-3"]

    def test_ages_resolved_against_clock(self) -> None:
        data = load_reference_data(now_ms=NOW)
        zone = data.high_risk_zones[0]
        report = data.community_reports[0]

        assert zone.last_reported == NOW - 86_400_000
        assert report.timestamp == NOW - 3_600_000
        assert report.location.timestamp == report.timestamp
        assert report.type is ReportType.UNSAFE_AREA

    def test_contacts_have_email(self) -> None:
        data = load_reference_data(now_ms=NOW)
        assert all(c.email for c in data.emergency_contacts)
        assert not any(c.notified for c in data.emergency_contacts)


class TestCustomFile:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_reference_data(tmp_path / "nope.json")

    def test_bad_items_are_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "city.json"
        path.write_text(
            json.dumps({
                "high_risk_zones": [
                    {"id": "ok", "center": {"lat": 19.07, "lng": 72.87}, "radius": 200, "risk_level": 0.4},
                    {"id": "no-radius", "center": {"lat": 19.07, "lng": 72.87}, "risk_level": 0.4},
                    {"id": "bad-risk", "center": {"lat": 19.07, "lng": 72.87}, "radius": 200, "risk_level": 4},
                ],
            }),
            encoding="utf-8",
        )

        data = load_reference_data(path, now_ms=NOW)

        assert [z.id for z in data.high_risk_zones] == ["ok"]
        assert data.community_reports == []
        assert data.emergency_contacts == []


class TestFreshContacts:
    def test_copies_are_reset_and_independent(self) -> None:
        contact = EmergencyContact(id="ec-1", name="Asha", email="asha@example.com", notified=True, notified_at=NOW)
        data = ReferenceData(emergency_contacts=[contact])

        fresh = data.fresh_contacts()
        fresh[0].mark_notified(NOW + 1)

        assert fresh[0] is not contact
        assert contact.notified_at == NOW
        assert data.fresh_contacts()[0].notified is False
