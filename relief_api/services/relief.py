# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Relief coordination service.

The request surface of the core. Every operation validates its input,
then consults the cache or the entity store, and mutations finish with
cache invalidation, exactly one broadcast and an action log line, in that
order. A failed mutation publishes nothing.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type, TypeVar, Union

from opentelemetry import trace
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from relief_api.domain.cache_keys import (
    INCIDENT_LIST_PREFIX,
    NEARBY_RESOURCES_PREFIX,
    feed_key,
    incident_filter_key
)
from relief_api.domain.incidents import EVENT_FOR_KIND, incident_event, resource_event
from relief_api.middleware.error_handler import ReliefError, UpstreamError, ValidationError
from relief_api.models.entities import Incident, Resource
from relief_api.models.enums import AuditAction, EntityKind
from relief_api.models.requests import (
    CreateIncidentRequest,
    CreateResourceRequest,
    NearbyResourcesQuery,
    UpdateIncidentRequest
)
from relief_api.observability import log_action
from .audit import AuditTrail
from .broadcast import BroadcastChannel
from .cache import CacheService
from .entity_store import EntityStore
from .proximity import ProximityEngine

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RequestModel = TypeVar("RequestModel", bound=BaseModel)


class FeedResult(BaseModel):
    """External feed payload and whether it was served from the cache."""

    data: Any = Field(None, description="Feed payload as returned by the fetcher")
    cached: bool = Field(..., description="True when served from the cache")


def _parse(model: Type[RequestModel], request: Union[RequestModel, Mapping[str, Any]]) -> RequestModel:
    if isinstance(request, model):
        return request
    try:
        return model.model_validate(request)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, f"Invalid {model.__name__}")


def _require_actor(actor: Optional[str]) -> str:
    if not actor or not str(actor).strip():
        raise ValidationError("An acting user is required")
    return str(actor).strip()


def _incidents_from_cache(value) -> List[Incident]:
    return [Incident.model_validate(item) for item in value]


class ReliefService:
    """Coordinates the store, cache, proximity engine, audit trail and broadcast."""

    def __init__(
        self,
        store: EntityStore,
        cache: CacheService,
        proximity: ProximityEngine,
        audit: AuditTrail,
        broadcast: BroadcastChannel
    ):
        self.store = store
        self.cache = cache
        self.proximity = proximity
        self.audit = audit
        self.broadcast = broadcast

    def _announce(self, kind: EntityKind, payload: Dict[str, Any]) -> None:
        event = EVENT_FOR_KIND[kind]
        self.broadcast.publish(event.value, payload)

    # Incidents

    async def create_incident(
        self,
        request: Union[CreateIncidentRequest, Mapping[str, Any]],
        actor: str
    ) -> Incident:
        """
        Create an incident owned by ``owner_id`` or, by default, the actor.

        The stored trail holds exactly one create entry.
        """
        actor = _require_actor(actor)
        request = _parse(CreateIncidentRequest, request)

        with tracer.start_as_current_span("relief.create_incident") as span:
            span.set_attribute("user.id", actor)

            incident = await self.store.create_incident({
                "title": request.title,
                "location_name": request.location_name,
                "location": request.location,
                "description": request.description,
                "tags": request.tags or [],
                "owner_id": request.owner_id or actor,
                "audit_trail": [self.audit.create_entry(actor)]
            })

            await self.cache.invalidate_prefix(INCIDENT_LIST_PREFIX)
            self._announce(
                EntityKind.INCIDENT,
                incident_event(AuditAction.CREATE, incident.id, incident)
            )
            log_action("incident_created", incident_id=incident.id, user_id=actor, title=incident.title)

            span.set_attribute("incident.id", incident.id)
            return incident

    async def update_incident(
        self,
        incident_id: str,
        request: Union[UpdateIncidentRequest, Mapping[str, Any]],
        actor: str,
        expected_version: Optional[int] = None
    ) -> Incident:
        """
        Apply a partial update and append one update entry to the trail.

        The entry is stamped before the write; see ``EntityStore.update_incident``
        for how racing updates order their entries.

        Raises:
            NotFoundError: unknown incident
            ConflictError: ``expected_version`` is stale
        """
        actor = _require_actor(actor)
        request = _parse(UpdateIncidentRequest, request)

        with tracer.start_as_current_span("relief.update_incident") as span:
            span.set_attributes({"incident.id": incident_id, "user.id": actor})

            incident = await self.store.update_incident(
                incident_id,
                request.to_fields(),
                self.audit.update_entry(actor),
                expected_version=expected_version
            )

            await self.cache.invalidate_prefix(INCIDENT_LIST_PREFIX)
            self._announce(
                EntityKind.INCIDENT,
                incident_event(AuditAction.UPDATE, incident.id, incident)
            )
            log_action(
                "incident_updated",
                incident_id=incident.id,
                user_id=actor,
                version=incident.version,
                audit_entries=len(incident.audit_trail),
                audit_trail_valid=self.audit.verify(incident.audit_trail)
            )
            return incident

    async def delete_incident(self, incident_id: str, actor: str) -> bool:
        """Attribute the deletion in the trail, then remove the incident."""
        actor = _require_actor(actor)

        with tracer.start_as_current_span("relief.delete_incident") as span:
            span.set_attributes({"incident.id": incident_id, "user.id": actor})

            await self.store.delete_incident(incident_id, self.audit.delete_entry(actor))

            await self.cache.invalidate_prefix(INCIDENT_LIST_PREFIX)
            self._announce(EntityKind.INCIDENT, incident_event(AuditAction.DELETE, incident_id))
            log_action("incident_deleted", incident_id=incident_id, user_id=actor)
            return True

    async def list_incidents(self, filter_map: Optional[Mapping[str, Any]] = None) -> List[Incident]:
        """Incidents matching an equality filter, read through the cache."""
        filter_map = filter_map or {}
        try:
            key = incident_filter_key(filter_map)
        except ValueError as e:
            raise ValidationError(str(e))

        with tracer.start_as_current_span("relief.list_incidents") as span:
            span.set_attribute("cache.key", key)

            entry = await self.cache.get(key)
            cached = self.cache.decode(entry, _incidents_from_cache) if entry is not None else None
            if cached is not None:
                span.set_attribute("cache.hit", True)
                return cached

            span.set_attribute("cache.hit", False)
            incidents = await self.store.get_incidents(filter_map)
            await self.cache.set(key, [incident.model_dump(mode="json") for incident in incidents])
            return incidents

    # Resources

    async def nearby_resources(
        self,
        incident_id: str,
        longitude: float,
        latitude: float,
        radius: Optional[float] = None
    ) -> List[Resource]:
        """Resources of one incident within ``radius`` meters of a point."""
        query = _parse(NearbyResourcesQuery, {"longitude": longitude, "latitude": latitude, "radius": radius})
        return await self.proximity.find_nearby_for_incident(incident_id, query.point, query.radius)

    async def create_resource(
        self,
        incident_id: str,
        request: Union[CreateResourceRequest, Mapping[str, Any]],
        actor: str
    ) -> Resource:
        """
        Create a resource under an existing incident.

        Raises:
            NotFoundError: ``incident_id`` does not exist
        """
        actor = _require_actor(actor)
        request = _parse(CreateResourceRequest, request)

        with tracer.start_as_current_span("relief.create_resource") as span:
            span.set_attributes({"incident.id": incident_id, "user.id": actor})

            resource = await self.store.create_resource({
                "incident_id": incident_id,
                "name": request.name,
                "location_name": request.location_name,
                "location": request.location,
                "type": request.type
            })

            await self.cache.invalidate_prefix(NEARBY_RESOURCES_PREFIX)
            self._announce(EntityKind.RESOURCE, resource_event(AuditAction.CREATE, resource))
            log_action(
                "resource_created",
                resource_id=resource.id,
                incident_id=incident_id,
                user_id=actor,
                type=resource.type
            )
            return resource

    # External feeds

    async def fetch_cached_feed(self, name: str, fetcher: Callable[[], Awaitable[Any]]) -> FeedResult:
        """
        Serve a third-party feed from the cache, fetching it on a miss.

        Raises:
            UpstreamError: the fetcher failed and nothing usable was cached
        """
        try:
            key = feed_key(name)
        except ValueError as e:
            raise ValidationError(str(e))

        entry = await self.cache.get(key)
        if entry is not None:
            log_action("feed_cache_hit", feed=name)
            return FeedResult(data=entry.value, cached=True)

        with tracer.start_as_current_span("relief.fetch_feed") as span:
            span.set_attribute("feed.name", name)
            try:
                data = await fetcher()
            except ReliefError:
                raise
            except Exception as e:
                logger.error(
                    f"Feed fetch failed: {name}",
                    extra={"extra_fields": {"feed": name, "error": str(e)}}
                )
                raise UpstreamError(f"Fetching feed '{name}' failed: {e}") from e

        await self.cache.set(key, data)
        log_action("feed_fetched", feed=name)
        return FeedResult(data=data, cached=False)
