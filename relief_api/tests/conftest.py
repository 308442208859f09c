# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.

Unit tests run against an in-memory stand-in for the async MongoDB client
that supports the query and update operators the services use.
"""

import asyncio
import copy
import math
import os
import re
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from relief_api.services.audit import AuditTrail
from relief_api.services.broadcast import BroadcastChannel
from relief_api.services.cache import CacheService
from relief_api.services.entity_store import EntityStore
from relief_api.services.mongodb import MongoDBService
from relief_api.services.proximity import ProximityEngine
from relief_api.services.relief import ReliefService

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['MONGODB_DATABASE'] = 'relief_test'


def _central_angle(a: List[float], b: List[float]) -> float:
    lng1, lat1 = map(math.radians, a)
    lng2, lat2 = map(math.radians, b)
    h = math.sin((lat2 - lat1) / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin((lng2 - lng1) / 2) ** 2
    return 2 * math.asin(min(1.0, math.sqrt(h)))


def _match_operator(value: Any, op: str, arg: Any) -> bool:
    if op == "$regex":
        return isinstance(value, str) and re.search(arg, value) is not None
    if op == "$lte":
        return value is not None and value <= arg
    if op == "$all":
        return isinstance(value, list) and all(item in value for item in arg)
    if op == "$size":
        return isinstance(value, list) and len(value) == arg
    if op == "$geoWithin":
        center, radians = arg["$centerSphere"]
        return isinstance(value, dict) and _central_angle(value["coordinates"], center) <= radians
    raise NotImplementedError(f"Operator not supported by the fake store: {op}")


def matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for field, condition in query.items():
        value = document.get(field)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            if not all(_match_operator(value, op, arg) for op, arg in condition.items()):
                return False
        elif isinstance(value, list) and not isinstance(condition, list):
            if condition not in value:
                return False
        elif value != condition:
            return False
    return True


class FakeCursor:
    def __init__(self, documents: List[Dict[str, Any]]):
        self.documents = documents

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.documents if length is None else self.documents[:length]


class FakeCollection:
    """Async collection double. Set ``fail_with`` to make every call raise."""

    def __init__(self, name: str):
        self.name = name
        self.documents: Dict[Any, Dict[str, Any]] = {}
        self.indexes: List[Any] = []
        self.fail_with: Optional[Exception] = None
        self.calls: List[str] = []

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if self.fail_with is not None:
            raise self.fail_with

    async def _suspend(self, operation: str) -> None:
        # Yield once so concurrent callers interleave the way driver round trips do.
        await asyncio.sleep(0)
        self._enter(operation)

    def _matching(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [doc for doc in self.documents.values() if matches(doc, query or {})]

    @staticmethod
    def _project(document: Dict[str, Any], projection: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        document = copy.deepcopy(document)
        if projection:
            keep = {field for field, flag in projection.items() if flag}
            document = {k: v for k, v in document.items() if k in keep or k == "_id"}
        return document

    async def insert_one(self, document: Dict[str, Any]):
        await self._suspend("insert_one")
        document = copy.deepcopy(document)
        document.setdefault("_id", ObjectId())
        if document["_id"] in self.documents:
            raise DuplicateKeyError(f"duplicate key: {document['_id']}")
        self.documents[document["_id"]] = document
        return SimpleNamespace(inserted_id=document["_id"])

    def find(self, query: Optional[Dict[str, Any]] = None, projection: Optional[Dict[str, Any]] = None):
        self._enter("find")
        return FakeCursor([self._project(doc, projection) for doc in self._matching(query)])

    async def find_one(self, query: Optional[Dict[str, Any]] = None, projection: Optional[Dict[str, Any]] = None):
        await self._suspend("find_one")
        found = self._matching(query)
        return self._project(found[0], projection) if found else None

    async def find_one_and_update(
        self,
        query: Dict[str, Any],
        update: Dict[str, Any],
        return_document: ReturnDocument = ReturnDocument.BEFORE
    ):
        await self._suspend("find_one_and_update")
        found = self._matching(query)
        if not found:
            return None
        document = found[0]
        before = copy.deepcopy(document)
        for field, value in update.get("$set", {}).items():
            document[field] = copy.deepcopy(value)
        for field, value in update.get("$push", {}).items():
            document.setdefault(field, []).append(copy.deepcopy(value))
        for field, value in update.get("$inc", {}).items():
            document[field] = document.get(field, 0) + value
        return copy.deepcopy(document) if return_document == ReturnDocument.AFTER else before

    async def replace_one(self, query: Dict[str, Any], replacement: Dict[str, Any], upsert: bool = False):
        await self._suspend("replace_one")
        found = self._matching(query)
        replacement = copy.deepcopy(replacement)
        if found:
            replacement["_id"] = found[0]["_id"]
            self.documents[replacement["_id"]] = replacement
            return SimpleNamespace(matched_count=1, upserted_id=None)
        if upsert:
            if "_id" not in replacement:
                replacement["_id"] = query.get("_id", ObjectId())
            self.documents[replacement["_id"]] = replacement
            return SimpleNamespace(matched_count=0, upserted_id=replacement["_id"])
        return SimpleNamespace(matched_count=0, upserted_id=None)

    async def delete_one(self, query: Dict[str, Any]):
        await self._suspend("delete_one")
        found = self._matching(query)
        if found:
            del self.documents[found[0]["_id"]]
        return SimpleNamespace(deleted_count=len(found[:1]))

    async def delete_many(self, query: Dict[str, Any]):
        await self._suspend("delete_many")
        found = self._matching(query)
        for document in found:
            del self.documents[document["_id"]]
        return SimpleNamespace(deleted_count=len(found))

    async def count_documents(self, query: Dict[str, Any]) -> int:
        await self._suspend("count_documents")
        return len(self._matching(query))

    async def create_index(self, keys, **kwargs):
        await self._suspend("create_index")
        self.indexes.append(keys)
        return "_".join(f"{field}_{direction}" for field, direction in keys)


class FakeDatabase:
    def __init__(self, name: str):
        self.name = name
        self.collections: Dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]


class FakeAdmin:
    def __init__(self):
        self.fail_with: Optional[Exception] = None

    async def command(self, name: str):
        if self.fail_with is not None:
            raise self.fail_with
        return {"ok": 1}


class FakeMongoClient:
    """Stands in for ``pymongo.AsyncMongoClient``."""

    def __init__(self):
        self.databases: Dict[str, FakeDatabase] = {}
        self.admin = FakeAdmin()
        self.closed = False

    def __getitem__(self, name: str) -> FakeDatabase:
        if name not in self.databases:
            self.databases[name] = FakeDatabase(name)
        return self.databases[name]

    async def server_info(self) -> Dict[str, Any]:
        return {"version": "7.0.0"}

    async def close(self) -> None:
        self.closed = True


class FrozenClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def fake_client():
    return FakeMongoClient()


@pytest.fixture
def mongo_service(fake_client):
    """Store handle backed by the in-memory client."""
    return MongoDBService("mongodb://localhost:27017/relief_test", "relief_test", client=fake_client)


@pytest.fixture
def database(fake_client):
    return fake_client["relief_test"]


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def cache_service(mongo_service, clock):
    return CacheService(mongo_service, ttl_seconds=3600, clock=clock)


@pytest.fixture
def entity_store(mongo_service):
    return EntityStore(mongo_service)


@pytest.fixture
def proximity_engine(entity_store, cache_service):
    return ProximityEngine(entity_store, cache_service, default_radius=10000)


@pytest.fixture
def broadcast_channel():
    return BroadcastChannel(queue_size=10)


@pytest.fixture
def relief_service(entity_store, cache_service, proximity_engine, broadcast_channel):
    return ReliefService(
        entity_store,
        cache_service,
        proximity_engine,
        AuditTrail(),
        broadcast_channel
    )


@pytest.fixture
def sample_incident_data():
    """Sample incident data for testing."""
    return {
        "title": "NYC Flood",
        "location_name": "Manhattan, NYC",
        "location": "SRID=4326;POINT(-74.006 40.7128)",
        "description": "Heavy flooding in Manhattan",
        "tags": ["flood", "urgent"]
    }


@pytest.fixture
def sample_resource_data():
    """Sample resource data for testing."""
    return {
        "name": "Red Cross Shelter",
        "location_name": "Lower East Side, NYC",
        "location": {"type": "Point", "coordinates": [-73.9857, 40.7484]},
        "type": "shelter"
    }
