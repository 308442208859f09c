# SPDX-License-Identifier: Apache-2.0

"""
TTL cache persisted in the store's ``cache`` collection.

Entries survive process restarts and are a derived view only: every value
can be recomputed from the entity store. Store failures inside the cache
are logged and reported as misses; the cache never fails an operation.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

from opentelemetry import trace
from pydantic import ValidationError as PydanticValidationError

from relief_api.middleware.error_handler import CacheFault
from relief_api.models.base import utcnow
from relief_api.models.entities import CacheEntry, ensure_utc
from .mongodb import MongoDBService, CACHE

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600

Decoded = TypeVar("Decoded")


class CacheService:
    """
    Key/value cache with absolute expiry timestamps.

    ``get`` only returns entries while ``now < expires_at``. ``set`` replaces
    any previous entry for the key. Expired rows are left in place until they
    are overwritten, invalidated or removed by ``sweep_expired``.
    """

    def __init__(
        self,
        mongo_service: MongoDBService,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
        collection_name: str = CACHE
    ):
        """
        Initialize the cache service.

        Args:
            mongo_service: Shared store handle
            ttl_seconds: Fixed TTL window applied by ``set`` when no expiry is given
            clock: Returns the current UTC time; injectable for tests
            collection_name: Backing collection
        """
        self.mongo_service = mongo_service
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock or utcnow
        self.collection_name = collection_name

    @property
    def collection(self):
        return self.mongo_service.get_collection(self.collection_name)

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    def expires_at_from_now(self) -> datetime:
        """Expiry for an entry written now under the configured TTL."""
        return self.now() + self.ttl

    def _handle_cache_error(self, fault: CacheFault) -> None:
        """Log cache faults; they are never raised to callers."""
        logger.warning(
            "Cache operation failed, treating as miss",
            extra={"extra_fields": {"error": fault.message}}
        )

    async def _load(self, key: str) -> Optional[CacheEntry]:
        try:
            document = await self.collection.find_one({"_id": key})
            if document is None:
                return None
            return CacheEntry(
                key=document["_id"],
                value=document.get("value"),
                expires_at=document["expires_at"]
            )
        except Exception as e:
            raise CacheFault(f"Cache GET failed for {key}: {e}") from e

    async def _store(self, entry: CacheEntry) -> None:
        try:
            await self.collection.replace_one(
                {"_id": entry.key},
                {"_id": entry.key, "value": entry.value, "expires_at": entry.expires_at},
                upsert=True
            )
        except Exception as e:
            raise CacheFault(f"Cache SET failed for {entry.key}: {e}") from e

    async def get(self, key: str) -> Optional[CacheEntry]:
        """
        Get a live entry by key.

        Args:
            key: Canonical cache key

        Returns:
            The entry if present and unexpired, otherwise None (a miss)
        """
        with tracer.start_as_current_span("cache.get") as span:
            span.set_attributes({"cache.operation": "get", "cache.key": key})

            try:
                entry = await self._load(key)
            except CacheFault as fault:
                span.set_attribute("cache.result", "error")
                self._handle_cache_error(fault)
                return None

            if entry is None or not entry.is_valid(self.now()):
                span.set_attribute("cache.result", "miss")
                logger.debug(f"Cache GET: {key} -> miss")
                return None

            span.set_attribute("cache.result", "hit")
            logger.debug(f"Cache GET: {key} -> hit")
            return entry

    async def set(self, key: str, value: Any, expires_at: Optional[datetime] = None) -> bool:
        """
        Upsert an entry, replacing any previous value for the key.

        Args:
            key: Canonical cache key
            value: JSON-serializable payload
            expires_at: Absolute expiry; defaults to now plus the configured TTL

        Returns:
            True if written, False if the write failed
        """
        with tracer.start_as_current_span("cache.set") as span:
            span.set_attributes({"cache.operation": "set", "cache.key": key})

            try:
                entry = CacheEntry(
                    key=key,
                    value=value,
                    expires_at=expires_at or self.expires_at_from_now()
                )
                await self._store(entry)
            except CacheFault as fault:
                span.set_attribute("cache.result", "error")
                self._handle_cache_error(fault)
                return False

            span.set_attribute("cache.result", "success")
            logger.debug(f"Cache SET successful: {key} (expires: {entry.expires_at.isoformat()})")
            return True

    def decode(self, entry: CacheEntry, decoder: Callable[[Any], Decoded]) -> Optional[Decoded]:
        """
        Turn a cached value back into domain objects.

        Rows outlive the code that wrote them, so a value that no longer
        decodes is logged like any other cache fault and read as a miss.

        Returns:
            The decoded value, or None when the caller should recompute
        """
        try:
            return decoder(entry.value)
        except (PydanticValidationError, TypeError) as e:
            self._handle_cache_error(CacheFault(f"Cache value unreadable for {entry.key}: {e}"))
            return None

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]]
    ) -> Tuple[Any, bool]:
        """
        Read-through helper.

        Returns the cached value on a hit; otherwise awaits ``compute``,
        writes the result under the configured TTL and returns it.

        Returns:
            (value, cached) where ``cached`` tells whether it came from the cache
        """
        entry = await self.get(key)
        if entry is not None:
            return entry.value, True

        value = await compute()
        await self.set(key, value)
        return value, False

    async def invalidate(self, key: str) -> bool:
        """Remove a single entry."""
        try:
            result = await self.collection.delete_one({"_id": key})
        except Exception as e:
            self._handle_cache_error(CacheFault(f"Cache DELETE failed for {key}: {e}"))
            return False
        return result.deleted_count > 0

    async def invalidate_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``."""
        with tracer.start_as_current_span("cache.invalidate_prefix") as span:
            span.set_attributes({"cache.operation": "invalidate_prefix", "cache.prefix": prefix})

            try:
                result = await self.collection.delete_many(
                    {"_id": {"$regex": f"^{re.escape(prefix)}"}}
                )
            except Exception as e:
                self._handle_cache_error(CacheFault(f"Cache invalidation failed for {prefix}: {e}"))
                return 0

            logger.debug(f"Cache invalidated: {prefix}* ({result.deleted_count} entries)")
            return result.deleted_count

    async def sweep_expired(self) -> int:
        """Delete rows whose expiry has passed. Safe to run at any time."""
        now = self.now()
        try:
            result = await self.collection.delete_many({"expires_at": {"$lte": now}})
        except Exception as e:
            self._handle_cache_error(CacheFault(f"Cache sweep failed: {e}"))
            return 0

        logger.info(f"Cache sweep removed {result.deleted_count} expired entries")
        return result.deleted_count

    async def health_check(self) -> dict:
        """Report row counts for the cache collection."""
        try:
            total = await self.collection.count_documents({})
            expired = await self.collection.count_documents({"expires_at": {"$lte": self.now()}})
        except Exception as e:
            return {"status": "degraded", "message": str(e)}
        return {"status": "healthy", "entries": total, "expired_entries": expired}
