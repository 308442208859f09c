# SPDX-License-Identifier: Apache-2.0

"""
Deterministic cache key derivation.

Pure functions: two semantically identical queries always produce the same
key. Filters are checked against a closed set of supported shapes before
they are serialized.
"""

import base64
import json
import math
from typing import Any, Dict, Mapping

INCIDENT_LIST_PREFIX = "incidents:list:"
NEARBY_RESOURCES_PREFIX = "resources:nearby:"
FEED_PREFIX = "feeds:"

# Fields an incident equality filter may name
INCIDENT_FILTER_FIELDS = frozenset({
    "id",
    "title",
    "location_name",
    "description",
    "owner_id",
    "tags",
})

SCALAR_FILTER_TYPES = (str, int, float, bool, type(None))


def canonicalize_filter(filter_map: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate an incident equality filter and return its canonical form.

    Supported shapes: scalar values (str, int, float, bool, None) for any
    filter field, and a list of strings for ``tags`` (compared as a set).

    Raises:
        ValueError: if the filter names an unknown field or uses an
            unsupported value shape
    """
    if filter_map is None:
        return {}
    if not isinstance(filter_map, Mapping):
        raise ValueError("Filter must be a mapping of field names to values")

    canonical = {}
    for field, value in filter_map.items():
        if field not in INCIDENT_FILTER_FIELDS:
            raise ValueError(f"Unsupported filter field: {field}")

        if field == "tags" and isinstance(value, (list, tuple, set, frozenset)):
            if not all(isinstance(tag, str) for tag in value):
                raise ValueError("Tag filters must contain only strings")
            canonical[field] = sorted(set(value))
        elif isinstance(value, SCALAR_FILTER_TYPES):
            if isinstance(value, float) and not math.isfinite(value):
                raise ValueError(f"Filter value for {field} must be finite")
            canonical[field] = value
        else:
            raise ValueError(f"Unsupported filter value for {field}: {type(value).__name__}")

    return canonical


def incident_filter_key(filter_map: Mapping[str, Any]) -> str:
    """Cache key for an incident list query."""
    canonical = canonicalize_filter(filter_map)
    serialized = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    encoded = base64.urlsafe_b64encode(serialized.encode("utf-8")).decode("ascii")
    return f"{INCIDENT_LIST_PREFIX}{encoded}"


def _number(value: Any) -> str:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError("Coordinates and radius must be finite numbers")
    return repr(number)


def nearby_resources_key(longitude: float, latitude: float, radius: float) -> str:
    """Cache key for an unfiltered proximity query."""
    return f"{NEARBY_RESOURCES_PREFIX}{_number(longitude)},{_number(latitude)},{_number(radius)}"


def feed_key(name: str) -> str:
    """Cache key for an external feed payload."""
    if not name:
        raise ValueError("Feed name is required")
    return f"{FEED_PREFIX}{name}"
