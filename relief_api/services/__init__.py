# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Store access, caching, proximity search and broadcast.
"""

from .mongodb import MongoDBService
from .entity_store import EntityStore
from .cache import CacheService
from .proximity import ProximityEngine, haversine_meters
from .audit import AuditTrail
from .broadcast import BroadcastChannel, Subscription
from .amqp import AMQPBroadcastRelay, AMQPConfig, create_broadcast_relay
from .relief import ReliefService, FeedResult

__all__ = [
    "MongoDBService",
    "EntityStore",
    "CacheService",
    "ProximityEngine",
    "haversine_meters",
    "AuditTrail",
    "BroadcastChannel",
    "Subscription",
    "AMQPBroadcastRelay",
    "AMQPConfig",
    "create_broadcast_relay",
    "ReliefService",
    "FeedResult"
]
