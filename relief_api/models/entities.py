# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the relief coordination core.
"""

import re
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from .base import BaseEntity, utcnow
from .enums import AuditAction


_EWKT_POINT = re.compile(
    r'^\s*(?:SRID=(?P<srid>\d+);)?\s*POINT\s*\(\s*(?P<lng>[-+0-9.eE]+)\s+(?P<lat>[-+0-9.eE]+)\s*\)\s*$',
    re.IGNORECASE
)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class GeoPoint(BaseModel):
    """WGS84 longitude/latitude pair."""

    model_config = ConfigDict(frozen=True)

    longitude: float = Field(..., ge=-180.0, le=180.0, description="WGS84 longitude")
    latitude: float = Field(..., ge=-90.0, le=90.0, description="WGS84 latitude")

    @model_validator(mode='before')
    @classmethod
    def coerce_encodings(cls, data: Any) -> Any:
        """Accept GeoJSON points, EWKT literals and (lng, lat) pairs."""
        if isinstance(data, str):
            return cls._parse_ewkt(data)
        if isinstance(data, (list, tuple)) and len(data) == 2:
            return {"longitude": data[0], "latitude": data[1]}
        if isinstance(data, dict) and data.get("type") == "Point":
            coordinates = data.get("coordinates") or []
            if len(coordinates) != 2:
                raise ValueError('GeoJSON point must have exactly two coordinates')
            return {"longitude": coordinates[0], "latitude": coordinates[1]}
        return data

    @staticmethod
    def _parse_ewkt(text: str) -> Dict[str, float]:
        match = _EWKT_POINT.match(text)
        if not match:
            raise ValueError(f'Invalid point literal: {text!r}')
        if match.group('srid') and match.group('srid') != '4326':
            raise ValueError('Only SRID 4326 points are supported')
        return {"longitude": float(match.group('lng')), "latitude": float(match.group('lat'))}

    @classmethod
    def from_ewkt(cls, text: str) -> "GeoPoint":
        """Parse an EWKT literal such as ``SRID=4326;POINT(-74.0 40.7)``."""
        return cls.model_validate(text)

    def to_ewkt(self) -> str:
        """Render as an EWKT literal."""
        return f"SRID=4326;POINT({self.longitude} {self.latitude})"

    def to_geojson(self) -> Dict[str, Any]:
        """Render as the GeoJSON point stored in MongoDB."""
        return {"type": "Point", "coordinates": [self.longitude, self.latitude]}


class AuditEntry(BaseModel):
    """Single mutation event in an incident audit trail."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    action: AuditAction = Field(..., description="Mutation kind")
    user_id: str = Field(..., min_length=1, description="Acting identity")
    timestamp: datetime = Field(default_factory=utcnow, description="When the mutation happened")

    @field_validator('timestamp')
    @classmethod
    def normalize_timestamp(cls, v):
        """Store every timestamp in UTC."""
        return ensure_utc(v)

    def to_document(self) -> Dict[str, Any]:
        """Serialize with an ISO-8601 timestamp for storage."""
        return {
            "action": self.action,
            "user_id": self.user_id,
            "timestamp": self.timestamp.isoformat()
        }


class Incident(BaseEntity):
    """Disaster incident with an embedded, append-only audit trail."""

    title: str = Field(..., min_length=1, max_length=200, description="Incident title")
    location_name: str = Field(..., min_length=1, description="Free text location")
    location: GeoPoint = Field(..., description="Incident coordinates")
    description: Optional[str] = Field(None, description="Incident description")
    tags: List[str] = Field(default_factory=list, description="Incident tags")
    owner_id: Optional[str] = Field(None, description="Owning user identifier")
    audit_trail: List[AuditEntry] = Field(default_factory=list, description="Mutation history")
    version: int = Field(default=1, ge=1, description="Incremented on every update")
    updated_at: datetime = Field(default_factory=utcnow, description="Last update timestamp")

    @field_validator('title', 'location_name')
    @classmethod
    def validate_not_blank(cls, v):
        """Reject whitespace-only text."""
        if not v.strip():
            raise ValueError('Field cannot be empty')
        return v.strip()

    @field_validator('tags', mode='before')
    @classmethod
    def normalize_tags(cls, v):
        """Treat tags as a set of strings while keeping first-seen order."""
        if v is None:
            return []
        seen = []
        for tag in v:
            tag = str(tag).strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen


class Resource(BaseEntity):
    """Relief resource attached to an incident."""

    incident_id: str = Field(..., min_length=1, description="Owning incident identifier")
    name: str = Field(..., min_length=1, max_length=200, description="Resource name")
    location_name: str = Field(..., min_length=1, description="Free text location")
    location: GeoPoint = Field(..., description="Resource coordinates")
    type: str = Field(..., min_length=1, description="Classifier such as shelter or medical")
    distance_meters: Optional[float] = Field(None, description="Distance from the query point")


class CacheEntry(BaseModel):
    """Memoized payload with an absolute expiry."""

    key: str = Field(..., min_length=1, description="Canonical query key")
    value: Any = Field(None, description="JSON-serializable payload")
    expires_at: datetime = Field(..., description="Entry is valid strictly before this instant")

    @field_validator('expires_at')
    @classmethod
    def normalize_expiry(cls, v):
        return ensure_utc(v)

    def is_valid(self, now: datetime) -> bool:
        """True while ``now`` is strictly before ``expires_at``."""
        return ensure_utc(now) < self.expires_at
