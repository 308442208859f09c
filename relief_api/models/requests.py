# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for the coordinator operations.
"""

import math
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from .entities import GeoPoint


class CreateIncidentRequest(BaseModel):
    """Request model for creating an incident.

    The location arrives already resolved by the geocoding collaborator.
    """

    model_config = ConfigDict(extra='forbid')

    title: str = Field(..., min_length=1, max_length=200, description="Incident title")
    location_name: str = Field(..., min_length=1, description="Free text location")
    location: GeoPoint = Field(..., description="Resolved coordinates")
    description: Optional[str] = Field(None, description="Incident description")
    tags: Optional[List[str]] = Field(None, description="Incident tags")
    owner_id: Optional[str] = Field(None, description="Owner, defaults to the acting user")

    @field_validator('title', 'location_name')
    @classmethod
    def validate_not_blank(cls, v):
        if not v.strip():
            raise ValueError('Field cannot be empty')
        return v.strip()


class UpdateIncidentRequest(BaseModel):
    """Request model for a partial incident update."""

    model_config = ConfigDict(extra='forbid')

    title: Optional[str] = Field(None, min_length=1, max_length=200, description="Incident title")
    location_name: Optional[str] = Field(None, min_length=1, description="Free text location")
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0, description="New longitude")
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0, description="New latitude")
    description: Optional[str] = Field(None, description="Incident description")
    tags: Optional[List[str]] = Field(None, description="Incident tags")

    @model_validator(mode='after')
    def validate_coordinates(self):
        """Coordinates only move together."""
        if (self.longitude is None) != (self.latitude is None):
            raise ValueError('longitude and latitude must be provided together')
        return self

    def to_fields(self) -> Dict[str, Any]:
        """Fields to merge over the stored incident; omitted fields stay unchanged."""
        fields = self.model_dump(exclude_none=True, exclude={'longitude', 'latitude'})
        if self.longitude is not None:
            fields['location'] = GeoPoint(longitude=self.longitude, latitude=self.latitude)
        return fields


class CreateResourceRequest(BaseModel):
    """Request model for creating a resource under an incident."""

    model_config = ConfigDict(extra='forbid')

    name: str = Field(..., min_length=1, max_length=200, description="Resource name")
    location_name: str = Field(..., min_length=1, description="Free text location")
    location: GeoPoint = Field(..., description="Resolved coordinates")
    type: str = Field(..., min_length=1, description="Classifier such as shelter or medical")

    @field_validator('name', 'location_name', 'type')
    @classmethod
    def validate_not_blank(cls, v):
        if not v.strip():
            raise ValueError('Field cannot be empty')
        return v.strip()


class NearbyResourcesQuery(BaseModel):
    """Query parameters for an incident-scoped proximity lookup."""

    longitude: float = Field(..., ge=-180.0, le=180.0)
    latitude: float = Field(..., ge=-90.0, le=90.0)
    radius: Optional[float] = Field(None, gt=0, description="Radius in meters")

    @field_validator('radius')
    @classmethod
    def validate_radius(cls, v):
        if v is not None and not math.isfinite(v):
            raise ValueError('radius must be finite')
        return v

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(longitude=self.longitude, latitude=self.latitude)
