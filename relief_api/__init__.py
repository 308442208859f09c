# SPDX-License-Identifier: Apache-2.0

"""
Relief coordination core.

Incidents and relief resources with geographic coordinates, a TTL cache
persisted next to them, proximity search, an embedded audit trail and a
broadcast channel announcing every mutation.
"""

__version__ = "1.0.0"
