# SPDX-License-Identifier: Apache-2.0

"""
Relief Coordination Core - Application Wiring

Builds every component from Settings exactly once and passes the shared
store handle and broadcast channel into each of them. The hosting routing
layer owns one ReliefApplication and calls ``service`` for requests and
``errors.run`` to turn results and failures into responses.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from relief_api.config import Settings
from relief_api.middleware.error_handler import ErrorHandlerMiddleware
from relief_api.observability import setup_observability
from relief_api.services.amqp import create_broadcast_relay
from relief_api.services.audit import AuditTrail
from relief_api.services.broadcast import BroadcastChannel
from relief_api.services.cache import CacheService
from relief_api.services.entity_store import EntityStore
from relief_api.services.mongodb import MongoDBService
from relief_api.services.proximity import ProximityEngine
from relief_api.services.relief import ReliefService

logger = logging.getLogger(__name__)


class ReliefApplication:
    """Owns the component graph and its lifecycle."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        mongo_service: Optional[MongoDBService] = None,
        configure_observability: bool = True
    ):
        self.settings = settings or Settings.from_env()
        if configure_observability:
            setup_observability(self.settings)

        self.mongo_service = mongo_service or MongoDBService.from_settings(self.settings)
        self.store = EntityStore(self.mongo_service)
        self.cache = CacheService(self.mongo_service, ttl_seconds=self.settings.cache_ttl_seconds)
        self.proximity = ProximityEngine(
            self.store,
            self.cache,
            default_radius=self.settings.default_search_radius_meters
        )
        self.audit = AuditTrail()
        self.broadcast = BroadcastChannel(queue_size=self.settings.broadcast_queue_size)
        self.relay = create_broadcast_relay(self.settings, self.broadcast)
        self.errors = ErrorHandlerMiddleware()

        self.service = ReliefService(
            self.store,
            self.cache,
            self.proximity,
            self.audit,
            self.broadcast
        )
        self.started_at: Optional[datetime] = None

    async def start(self) -> None:
        """Connect to the store and start relaying broadcasts."""
        await self.mongo_service.connect()
        if self.relay is not None:
            self.relay.start()
        self.started_at = datetime.now(timezone.utc)
        logger.info(
            "Relief coordination core started",
            extra={"extra_fields": {
                "environment": self.settings.environment,
                "version": self.settings.service_version,
                "relay_enabled": self.relay is not None
            }}
        )

    async def close(self) -> None:
        if self.relay is not None:
            await self.relay.stop()
        await self.mongo_service.close_connection()
        logger.info("Relief coordination core stopped")

    async def __aenter__(self) -> "ReliefApplication":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def health(self) -> Dict[str, Any]:
        """
        Aggregate dependency health.

        ``unhealthy`` when the store is down, ``degraded`` when only the
        cache or the relay reports a problem.
        """
        store = await self.mongo_service.health_check()
        cache = await self.cache.health_check()
        dependencies: Dict[str, Any] = {
            "mongodb": store,
            "cache": cache,
            "broadcast": {"status": "healthy", "subscribers": self.broadcast.subscriber_count}
        }
        if self.relay is not None:
            dependencies["amqp"] = self.relay.health_check()

        if store.get("status") != "healthy":
            status = "unhealthy"
        elif any(dep.get("status") != "healthy" for dep in dependencies.values()):
            status = "degraded"
        else:
            status = "healthy"

        uptime = None
        if self.started_at is not None:
            uptime = round((datetime.now(timezone.utc) - self.started_at).total_seconds(), 2)

        return {
            "status": status,
            "service": "relief-coordination-core",
            "version": self.settings.service_version,
            "environment": self.settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": uptime,
            "dependencies": dependencies
        }
