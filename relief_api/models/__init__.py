# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas and data models for the relief coordination core.
"""

# Base models
from .base import BaseEntity, generate_object_id, utcnow

# Enumerations
from .enums import AuditAction, EntityKind, BroadcastEvent

# Core entities
from .entities import GeoPoint, AuditEntry, Incident, Resource, CacheEntry, ensure_utc

# Request models
from .requests import (
    CreateIncidentRequest,
    UpdateIncidentRequest,
    CreateResourceRequest,
    NearbyResourcesQuery
)

__all__ = [
    # Base
    "BaseEntity",
    "generate_object_id",
    "utcnow",

    # Enums
    "AuditAction",
    "EntityKind",
    "BroadcastEvent",

    # Entities
    "GeoPoint",
    "AuditEntry",
    "Incident",
    "Resource",
    "CacheEntry",
    "ensure_utc",

    # Requests
    "CreateIncidentRequest",
    "UpdateIncidentRequest",
    "CreateResourceRequest",
    "NearbyResourcesQuery"
]
