# SPDX-License-Identifier: Apache-2.0

"""
Incident and resource domain rules.

Pure functions for required-field checks, partial-update merging and
broadcast payloads. No I/O happens here.
"""

from typing import Any, Dict, Iterable, List, Mapping

from relief_api.models.enums import AuditAction, BroadcastEvent, EntityKind

INCIDENT_REQUIRED_FIELDS = ('title', 'location_name', 'location')
RESOURCE_REQUIRED_FIELDS = ('incident_id', 'name', 'location_name', 'location', 'type')

# Fields a partial update may change; identity, trail and timestamps are store-owned
INCIDENT_UPDATABLE_FIELDS = frozenset({
    'title',
    'location_name',
    'location',
    'description',
    'tags',
    'owner_id',
})


def missing_fields(fields: Mapping[str, Any], required: Iterable[str]) -> List[str]:
    """Names of required fields that are absent, None or blank."""
    missing = []
    for name in required:
        value = fields.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def unknown_update_fields(partial_fields: Mapping[str, Any]) -> List[str]:
    """Names in a partial update that cannot be changed."""
    return sorted(set(partial_fields) - INCIDENT_UPDATABLE_FIELDS)


def merge_partial(current: Mapping[str, Any], partial_fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay provided fields on the current record; omitted fields stay unchanged."""
    merged = dict(current)
    for key, value in partial_fields.items():
        if value is not None:
            merged[key] = value
    return merged


def incident_event(action: AuditAction, incident_id: str, incident: Any = None) -> Dict[str, Any]:
    """Payload for an ``incident_updated`` broadcast."""
    payload = {
        "action": AuditAction(action).value,
        "entity": EntityKind.INCIDENT.value,
        "id": incident_id
    }
    if incident is not None:
        payload["incident"] = incident.model_dump(mode="json")
    return payload


def resource_event(action: AuditAction, resource: Any) -> Dict[str, Any]:
    """Payload for a ``resources_updated`` broadcast."""
    return {
        "action": AuditAction(action).value,
        "entity": EntityKind.RESOURCE.value,
        "id": resource.id,
        "incident_id": resource.incident_id
    }


EVENT_FOR_KIND = {
    EntityKind.INCIDENT: BroadcastEvent.INCIDENT_UPDATED,
    EntityKind.RESOURCE: BroadcastEvent.RESOURCES_UPDATED,
}
