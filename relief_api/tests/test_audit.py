# SPDX-License-Identifier: Apache-2.0

"""
Tests for audit entries and incident domain rules.
"""

from datetime import datetime, timedelta, timezone

from relief_api.domain.incidents import (
    incident_event,
    merge_partial,
    missing_fields,
    unknown_update_fields
)
from relief_api.models.entities import AuditEntry
from relief_api.models.enums import AuditAction
from relief_api.services.audit import AuditTrail

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _entry(action, minutes):
    return AuditEntry(action=action, user_id="netrunnerX", timestamp=T0 + timedelta(minutes=minutes))


class TestAuditTrail:

    def test_entry_uses_clock(self):
        audit = AuditTrail(clock=lambda: T0)
        entry = audit.update_entry("reliefAdmin")

        assert entry.action == "update"
        assert entry.user_id == "reliefAdmin"
        assert entry.timestamp == T0

    def test_shorthands(self):
        audit = AuditTrail()
        assert [audit.create_entry("u").action, audit.update_entry("u").action, audit.delete_entry("u").action] == \
            ["create", "update", "delete"]

    def test_verify_accepts_chronological_trail(self):
        trail = [_entry("create", 0), _entry("update", 1), _entry("update", 1), _entry("delete", 5)]
        assert AuditTrail.verify(trail)
        assert AuditTrail.verify([])

    def test_verify_rejects_out_of_order(self):
        assert not AuditTrail.verify([_entry("create", 5), _entry("update", 1)])

    def test_verify_rejects_second_create(self):
        assert not AuditTrail.verify([_entry("create", 0), _entry("create", 1)])

    def test_extends(self):
        before = [_entry("create", 0)]
        assert AuditTrail.extends(before, before + [_entry("update", 1)])
        assert not AuditTrail.extends(before, before)
        assert not AuditTrail.extends(before, [_entry("update", 1), _entry("update", 2)])


class TestIncidentRules:

    def test_missing_fields(self):
        assert missing_fields({"title": "x", "location_name": " "}, ("title", "location_name", "location")) == \
            ["location_name", "location"]

    def test_unknown_update_fields(self):
        assert unknown_update_fields({"title": "x", "version": 3, "audit_trail": []}) == ["audit_trail", "version"]

    def test_merge_partial_keeps_omitted_fields(self):
        current = {"title": "NYC Flood", "description": "Heavy flooding", "tags": ["flood"]}
        merged = merge_partial(current, {"description": "Receding", "tags": None})

        assert merged == {"title": "NYC Flood", "description": "Receding", "tags": ["flood"]}
        assert current["description"] == "Heavy flooding"

    def test_incident_event_without_snapshot(self):
        assert incident_event(AuditAction.DELETE, "42") == {"action": "delete", "entity": "incident", "id": "42"}
