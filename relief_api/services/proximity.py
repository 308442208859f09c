# SPDX-License-Identifier: Apache-2.0

"""
Proximity search over resource coordinates.
"""

import logging
import math
from typing import List, Optional

from opentelemetry import trace

from relief_api.domain.cache_keys import nearby_resources_key
from relief_api.middleware.error_handler import ValidationError
from relief_api.models.entities import GeoPoint, Resource
from .cache import CacheService
from .entity_store import EntityStore, EARTH_RADIUS_METERS

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_RADIUS_METERS = 10000.0


def haversine_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points on the store's sphere."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.longitude - a.longitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))


def _resources_from_cache(value) -> List[Resource]:
    return [Resource.model_validate(item) for item in value]


class ProximityEngine:
    """Radius queries read through the TTL cache."""

    def __init__(
        self,
        store: EntityStore,
        cache: CacheService,
        default_radius: float = DEFAULT_RADIUS_METERS
    ):
        self.store = store
        self.cache = cache
        self.default_radius = float(default_radius)

    def _resolve_radius(self, radius_meters: Optional[float]) -> float:
        radius = self.default_radius if radius_meters is None else radius_meters
        try:
            radius = float(radius)
        except (TypeError, ValueError):
            raise ValidationError("Radius must be a number of meters")
        if not math.isfinite(radius) or radius <= 0:
            raise ValidationError("Radius must be a positive, finite number of meters")
        return radius

    async def find_nearby(self, point: GeoPoint, radius_meters: Optional[float] = None) -> List[Resource]:
        """
        Every resource within ``radius_meters`` of ``point``, unsorted.

        Each resource carries ``distance_meters`` from the query point. The
        unfiltered result is cached per (longitude, latitude, radius).
        """
        radius = self._resolve_radius(radius_meters)
        key = nearby_resources_key(point.longitude, point.latitude, radius)

        with tracer.start_as_current_span("proximity.find_nearby") as span:
            span.set_attributes({"cache.key": key, "geo.radius_meters": radius})

            entry = await self.cache.get(key)
            cached = self.cache.decode(entry, _resources_from_cache) if entry is not None else None
            if cached is not None:
                span.set_attribute("cache.hit", True)
                return cached

            span.set_attribute("cache.hit", False)
            resources = [
                resource.model_copy(update={"distance_meters": haversine_meters(point, resource.location)})
                for resource in await self.store.resources_within(point, radius)
            ]
            await self.cache.set(key, [resource.model_dump(mode="json") for resource in resources])

            logger.debug(f"Found {len(resources)} resources within {radius}m of {point.to_ewkt()}")
            return resources

    async def find_nearby_for_incident(
        self,
        incident_id: str,
        point: GeoPoint,
        radius_meters: Optional[float] = None
    ) -> List[Resource]:
        """Nearby resources restricted to one incident, filtered after the cached radius query."""
        resources = await self.find_nearby(point, radius_meters)
        return [resource for resource in resources if resource.incident_id == incident_id]
