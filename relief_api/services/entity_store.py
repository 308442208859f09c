# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Entity store for incidents and resources.

Owns the canonical record shape and the GeoJSON point encoding. The store
neither invalidates caches nor broadcasts; the coordinator does both after
a mutation succeeds.
"""

import logging
import math
from contextlib import contextmanager
from typing import Any, Dict, List, Mapping, Optional

from opentelemetry import trace
from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from relief_api.domain.cache_keys import SCALAR_FILTER_TYPES, canonicalize_filter
from relief_api.domain.incidents import (
    INCIDENT_REQUIRED_FIELDS,
    RESOURCE_REQUIRED_FIELDS,
    merge_partial,
    missing_fields,
    unknown_update_fields
)
from relief_api.middleware.error_handler import (
    ConflictError,
    NotFoundError,
    UpstreamError,
    ValidationError
)
from relief_api.models.base import utcnow
from relief_api.models.entities import AuditEntry, GeoPoint, Incident, Resource
from .mongodb import MongoDBService, INCIDENTS, RESOURCES

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Mean Earth radius used by MongoDB to interpret $centerSphere radians
EARTH_RADIUS_METERS = 6378100.0

RESOURCE_FILTER_FIELDS = frozenset({"id", "incident_id", "name", "location_name", "type"})


class EntityStore:
    """CRUD persistence for incidents and resources."""

    def __init__(self, mongo_service: MongoDBService):
        self.mongo_service = mongo_service

    @property
    def incidents(self):
        return self.mongo_service.get_collection(INCIDENTS)

    @property
    def resources(self):
        return self.mongo_service.get_collection(RESOURCES)

    @contextmanager
    def _store_errors(self, operation: str):
        """Translate driver failures into UpstreamError."""
        try:
            yield
        except PyMongoError as e:
            logger.error(
                f"Store operation failed: {operation}",
                extra={"extra_fields": {"operation": operation, "error": str(e)}},
                exc_info=True
            )
            raise UpstreamError(f"Store operation '{operation}' failed: {e}") from e

    @staticmethod
    def _object_id_or_none(doc_id: str):
        try:
            return MongoDBService.to_object_id(doc_id)
        except ValueError:
            return None

    def _require_object_id(self, doc_id: str, kind: str):
        object_id = self._object_id_or_none(doc_id)
        if object_id is None:
            raise NotFoundError(f"{kind} not found: {doc_id}")
        return object_id

    @staticmethod
    def _incident_from_document(document: Dict[str, Any]) -> Incident:
        return Incident.model_validate(MongoDBService.to_record(document))

    @staticmethod
    def _resource_from_document(document: Dict[str, Any]) -> Resource:
        return Resource.model_validate(MongoDBService.to_record(document))

    @staticmethod
    def _incident_document(incident: Incident) -> Dict[str, Any]:
        return {
            "_id": MongoDBService.to_object_id(incident.id),
            "title": incident.title,
            "location_name": incident.location_name,
            "location": incident.location.to_geojson(),
            "description": incident.description,
            "tags": list(incident.tags),
            "owner_id": incident.owner_id,
            "audit_trail": [entry.to_document() for entry in incident.audit_trail],
            "version": incident.version,
            "created_at": incident.created_at,
            "updated_at": incident.updated_at
        }

    # Incidents

    async def create_incident(self, fields: Mapping[str, Any]) -> Incident:
        """
        Store a new incident.

        Args:
            fields: title, location_name and location are required; description,
                tags, owner_id and an initial audit_trail are optional

        Returns:
            The stored incident including its store-assigned id

        Raises:
            ValidationError: required fields absent or malformed
            UpstreamError: store failure
        """
        missing = missing_fields(fields, INCIDENT_REQUIRED_FIELDS)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        now = utcnow()
        try:
            incident = Incident(
                title=fields["title"],
                location_name=fields["location_name"],
                location=fields["location"],
                description=fields.get("description"),
                tags=fields.get("tags") or [],
                owner_id=fields.get("owner_id"),
                audit_trail=list(fields.get("audit_trail") or []),
                created_at=now,
                updated_at=now
            )
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e, "Invalid incident fields")

        with tracer.start_as_current_span("store.create_incident") as span:
            with self._store_errors("create_incident"):
                await self.incidents.insert_one(self._incident_document(incident))

            span.set_attribute("incident.id", incident.id)
            logger.info(f"Created incident {incident.id}")
            return incident

    async def get_incidents(self, filter_map: Optional[Mapping[str, Any]] = None) -> List[Incident]:
        """
        Return every incident matching an equality filter. No match is an empty list.

        Raises:
            ValidationError: unsupported filter field or value shape
            UpstreamError: store failure
        """
        try:
            canonical = canonicalize_filter(filter_map or {})
        except ValueError as e:
            raise ValidationError(str(e))

        query: Dict[str, Any] = {}
        for field, value in canonical.items():
            if field == "id":
                object_id = self._object_id_or_none(value) if isinstance(value, str) else None
                if object_id is None:
                    return []
                query["_id"] = object_id
            elif field == "tags" and isinstance(value, list):
                query["tags"] = {"$all": value, "$size": len(value)}
            else:
                query[field] = value

        with tracer.start_as_current_span("store.get_incidents") as span:
            with self._store_errors("get_incidents"):
                documents = await self.incidents.find(query).to_list(None)

            span.set_attribute("store.result_count", len(documents))
            logger.debug(f"Found {len(documents)} incidents for filter {canonical}")
            return [self._incident_from_document(doc) for doc in documents]

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        """Fetch a single incident directly from the store."""
        object_id = self._object_id_or_none(incident_id)
        if object_id is None:
            return None

        with self._store_errors("get_incident"):
            document = await self.incidents.find_one({"_id": object_id})
        return self._incident_from_document(document) if document else None

    async def update_incident(
        self,
        incident_id: str,
        partial_fields: Mapping[str, Any],
        audit_entry: AuditEntry,
        expected_version: Optional[int] = None
    ) -> Incident:
        """
        Merge ``partial_fields`` over the stored incident and append ``audit_entry``.

        The field merge, the trail append and the version increment are one
        document update. Without ``expected_version`` concurrent field writes
        are last-writer-wins; trail entries are never lost.

        Trail order is write order. ``audit_entry`` is stamped by the caller
        before this call, so two racing updates can land with their
        timestamps swapped and ``AuditTrail.verify`` will then report the
        trail as out of order. Pass ``expected_version`` where that matters.

        Raises:
            NotFoundError: incident does not exist
            ConflictError: ``expected_version`` does not match the stored version
            ValidationError: unknown or malformed fields
            UpstreamError: store failure
        """
        unknown = unknown_update_fields(partial_fields)
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")

        object_id = self._require_object_id(incident_id, "Incident")

        with self._store_errors("update_incident.fetch"):
            current_document = await self.incidents.find_one({"_id": object_id})
        if current_document is None:
            raise NotFoundError(f"Incident not found: {incident_id}")

        current = self._incident_from_document(current_document)
        if expected_version is not None and current.version != expected_version:
            raise ConflictError(
                f"Incident {incident_id} is at version {current.version}, expected {expected_version}"
            )

        try:
            merged = Incident.model_validate(
                merge_partial(current.model_dump(), partial_fields)
            )
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e, "Invalid incident fields")

        changes = {
            field: getattr(merged, field)
            for field, value in partial_fields.items()
            if value is not None
        }
        if isinstance(changes.get("location"), GeoPoint):
            changes["location"] = changes["location"].to_geojson()
        changes["updated_at"] = utcnow()

        query: Dict[str, Any] = {"_id": object_id}
        if expected_version is not None:
            query["version"] = expected_version

        with tracer.start_as_current_span("store.update_incident") as span:
            span.set_attributes({"incident.id": incident_id, "audit.action": audit_entry.action})

            with self._store_errors("update_incident"):
                document = await self.incidents.find_one_and_update(
                    query,
                    {
                        "$set": changes,
                        "$push": {"audit_trail": audit_entry.to_document()},
                        "$inc": {"version": 1}
                    },
                    return_document=ReturnDocument.AFTER
                )

            if document is None:
                if expected_version is not None and await self.get_incident(incident_id):
                    raise ConflictError(f"Incident {incident_id} changed concurrently")
                raise NotFoundError(f"Incident not found: {incident_id}")

            logger.info(f"Updated incident {incident_id}")
            return self._incident_from_document(document)

    async def delete_incident(self, incident_id: str, audit_entry: AuditEntry) -> Incident:
        """
        Attribute the deletion in the trail, then remove the row.

        These are two separate store operations, not one transaction: the
        trail write lands first so the delete is attributed even though the
        row then disappears.

        Returns:
            The incident as it was just before removal, delete entry included

        Raises:
            NotFoundError: incident does not exist
            UpstreamError: store failure
        """
        object_id = self._require_object_id(incident_id, "Incident")

        with tracer.start_as_current_span("store.delete_incident") as span:
            span.set_attribute("incident.id", incident_id)

            with self._store_errors("delete_incident.audit"):
                document = await self.incidents.find_one_and_update(
                    {"_id": object_id},
                    {
                        "$push": {"audit_trail": audit_entry.to_document()},
                        "$set": {"updated_at": utcnow()}
                    },
                    return_document=ReturnDocument.AFTER
                )
            if document is None:
                raise NotFoundError(f"Incident not found: {incident_id}")

            with self._store_errors("delete_incident"):
                result = await self.incidents.delete_one({"_id": object_id})
            if result.deleted_count == 0:
                raise NotFoundError(f"Incident not found: {incident_id}")

            logger.warning(f"Deleted incident {incident_id}")
            return self._incident_from_document(document)

    # Resources

    async def create_resource(self, fields: Mapping[str, Any]) -> Resource:
        """
        Store a new resource under an existing incident.

        Raises:
            ValidationError: required fields absent or malformed
            NotFoundError: incident_id does not reference an existing incident
            UpstreamError: store failure
        """
        missing = missing_fields(fields, RESOURCE_REQUIRED_FIELDS)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        try:
            resource = Resource(
                incident_id=fields["incident_id"],
                name=fields["name"],
                location_name=fields["location_name"],
                location=fields["location"],
                type=fields["type"]
            )
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e, "Invalid resource fields")

        incident_oid = self._require_object_id(resource.incident_id, "Incident")
        with self._store_errors("create_resource.incident"):
            exists = await self.incidents.find_one({"_id": incident_oid}, {"_id": 1})
        if exists is None:
            raise NotFoundError(f"Incident not found: {resource.incident_id}")

        document = {
            "_id": MongoDBService.to_object_id(resource.id),
            "incident_id": resource.incident_id,
            "name": resource.name,
            "location_name": resource.location_name,
            "location": resource.location.to_geojson(),
            "type": resource.type,
            "created_at": resource.created_at
        }

        with tracer.start_as_current_span("store.create_resource") as span:
            with self._store_errors("create_resource"):
                await self.resources.insert_one(document)

            span.set_attributes({"resource.id": resource.id, "incident.id": resource.incident_id})
            logger.info(f"Created resource {resource.id} for incident {resource.incident_id}")
            return resource

    async def get_resources(self, filter_map: Optional[Mapping[str, Any]] = None) -> List[Resource]:
        """Return every resource matching an equality filter."""
        query: Dict[str, Any] = {}
        for field, value in (filter_map or {}).items():
            if field not in RESOURCE_FILTER_FIELDS:
                raise ValidationError(f"Unsupported filter field: {field}")
            if not isinstance(value, SCALAR_FILTER_TYPES):
                raise ValidationError(f"Unsupported filter value for {field}: {type(value).__name__}")
            if field == "id":
                object_id = self._object_id_or_none(value)
                if object_id is None:
                    return []
                query["_id"] = object_id
            else:
                query[field] = value

        with self._store_errors("get_resources"):
            documents = await self.resources.find(query).to_list(None)
        return [self._resource_from_document(doc) for doc in documents]

    async def resources_within(self, point: GeoPoint, radius_meters: float) -> List[Resource]:
        """
        Resources whose location lies within ``radius_meters`` of ``point``
        on the sphere. Order is whatever the store returns.
        """
        if not math.isfinite(radius_meters) or radius_meters <= 0:
            raise ValidationError("Radius must be a positive number of meters")

        query = {
            "location": {
                "$geoWithin": {
                    "$centerSphere": [
                        [point.longitude, point.latitude],
                        radius_meters / EARTH_RADIUS_METERS
                    ]
                }
            }
        }

        with tracer.start_as_current_span("store.resources_within") as span:
            span.set_attributes({
                "geo.longitude": point.longitude,
                "geo.latitude": point.latitude,
                "geo.radius_meters": radius_meters
            })

            with self._store_errors("resources_within"):
                documents = await self.resources.find(query).to_list(None)

            span.set_attribute("store.result_count", len(documents))
            return [self._resource_from_document(doc) for doc in documents]
