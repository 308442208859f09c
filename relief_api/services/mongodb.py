# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB store handle with connection pooling and index management.

A single MongoDBService is created at process start and passed to every
component that needs the store; there is no module-level client.
"""

import logging
from typing import Dict, Optional, Any
from pymongo import AsyncMongoClient, ASCENDING, GEOSPHERE
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError, PyMongoError
from bson import ObjectId
from bson.errors import InvalidId

logger = logging.getLogger(__name__)

INCIDENTS = "incidents"
RESOURCES = "resources"
CACHE = "cache"


class MongoDBService:
    """MongoDB store handle shared by the entity store, cache and proximity engine."""

    def __init__(
        self,
        connection_string: str,
        database_name: str,
        max_pool_size: int = 10,
        min_pool_size: int = 1,
        server_selection_timeout_ms: int = 5000,
        client: Optional[Any] = None
    ):
        """Initialize the store handle. The client is created lazily unless injected."""
        self.connection_string = connection_string
        self.database_name = database_name
        self.max_pool_size = max_pool_size
        self.min_pool_size = min_pool_size
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self._client = client
        self._database = None

        logger.info(f"MongoDB service initialized for database: {self.database_name}")

    @classmethod
    def from_settings(cls, settings) -> "MongoDBService":
        return cls(
            settings.mongodb_uri,
            settings.mongodb_database,
            max_pool_size=settings.mongodb_max_pool_size,
            min_pool_size=settings.mongodb_min_pool_size,
            server_selection_timeout_ms=settings.mongodb_server_selection_timeout_ms
        )

    @property
    def client(self) -> AsyncMongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            self._client = AsyncMongoClient(
                self.connection_string,
                maxPoolSize=self.max_pool_size,
                minPoolSize=self.min_pool_size,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                tz_aware=True,
                retryWrites=True,
                retryReads=True
            )
        return self._client

    @property
    def database(self):
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str):
        """Get MongoDB collection."""
        return self.database[collection_name]

    async def connect(self) -> None:
        """Verify the server is reachable."""
        try:
            await self.client.admin.command('ping')
            logger.info("MongoDB connection established successfully")
        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    async def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            result = await self.client.admin.command('ping')
            server_info = await self.client.server_info()

            return {
                'status': 'healthy',
                'ping': result.get('ok') == 1,
                'version': server_info.get('version'),
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'error': str(e),
                'database': self.database_name
            }

    @staticmethod
    def to_object_id(doc_id: str) -> ObjectId:
        """Validate and convert string ID to ObjectId."""
        if isinstance(doc_id, ObjectId):
            return doc_id
        if not isinstance(doc_id, str):
            raise ValueError(f"Invalid ObjectId format: {doc_id!r}")
        try:
            return ObjectId(doc_id)
        except (InvalidId, TypeError):
            raise ValueError(f"Invalid ObjectId format: {doc_id}")

    @staticmethod
    def to_record(document: Dict[str, Any]) -> Dict[str, Any]:
        """Convert the stored _id into a string id for the models."""
        record = dict(document)
        if "_id" in record:
            record["id"] = str(record.pop("_id"))
        return record

    # Index Management

    async def create_indexes(self) -> None:
        """Create geospatial and lookup indexes for all collections."""
        try:
            logger.info("Creating MongoDB indexes...")

            incidents = self.get_collection(INCIDENTS)
            await incidents.create_index([("location", GEOSPHERE)])
            await incidents.create_index([("owner_id", ASCENDING)])

            resources = self.get_collection(RESOURCES)
            await resources.create_index([("location", GEOSPHERE)])
            await resources.create_index([("incident_id", ASCENDING)])

            cache = self.get_collection(CACHE)
            await cache.create_index([("expires_at", ASCENDING)])

            logger.info("MongoDB indexes created successfully")

        except PyMongoError as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise

    async def count_documents(self, collection: str, query: Optional[Dict] = None) -> int:
        """Count documents in a collection."""
        return await self.get_collection(collection).count_documents(query or {})
