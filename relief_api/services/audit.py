# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit trail protocol for incident mutations.

Every mutation path builds exactly one AuditEntry here and hands it to the
entity store, which appends it to the incident's embedded trail. Past
entries are never edited, removed or reordered.
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Sequence

from opentelemetry import trace

from relief_api.models.base import utcnow
from relief_api.models.entities import AuditEntry, ensure_utc
from relief_api.models.enums import AuditAction

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class AuditTrail:
    """Builds audit entries with the acting identity and the current time."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or utcnow

    def entry(self, action: AuditAction, actor: str, now: Optional[datetime] = None) -> AuditEntry:
        """
        Build an audit entry.

        Args:
            action: Mutation kind
            actor: Identifier of the acting user
            now: Override for the entry timestamp

        Returns:
            AuditEntry ready to be appended by the entity store
        """
        with tracer.start_as_current_span("audit.entry") as span:
            span.set_attributes({"audit.action": AuditAction(action).value, "audit.user_id": actor})
            return AuditEntry(
                action=action,
                user_id=actor,
                timestamp=ensure_utc(now or self.clock())
            )

    def create_entry(self, actor: str) -> AuditEntry:
        return self.entry(AuditAction.CREATE, actor)

    def update_entry(self, actor: str) -> AuditEntry:
        return self.entry(AuditAction.UPDATE, actor)

    def delete_entry(self, actor: str) -> AuditEntry:
        return self.entry(AuditAction.DELETE, actor)

    @staticmethod
    def verify(trail: Sequence[AuditEntry]) -> bool:
        """
        Check the trail invariant: entries in chronological order and, when
        the trail starts with a creation, no second creation afterwards.
        """
        for previous, current in zip(trail, trail[1:]):
            if current.timestamp < previous.timestamp:
                return False
        if trail and trail[0].action == AuditAction.CREATE.value:
            return all(entry.action != AuditAction.CREATE.value for entry in trail[1:])
        return True

    @staticmethod
    def extends(before: Sequence[AuditEntry], after: Sequence[AuditEntry]) -> bool:
        """True when ``after`` is ``before`` plus exactly one appended entry."""
        return len(after) == len(before) + 1 and list(after[:len(before)]) == list(before)
