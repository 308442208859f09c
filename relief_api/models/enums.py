# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the relief coordination core.
"""

from enum import Enum


class AuditAction(str, Enum):
    """Mutation kinds recorded in an incident audit trail."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntityKind(str, Enum):
    """Entity kinds named in broadcast events."""
    INCIDENT = "incident"
    RESOURCE = "resource"


class BroadcastEvent(str, Enum):
    """Event names published on the broadcast channel."""
    INCIDENT_UPDATED = "incident_updated"
    RESOURCES_UPDATED = "resources_updated"
