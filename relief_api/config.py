# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Environment configuration for the relief coordination core.
"""

import os
from dataclasses import dataclass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == 'true'


@dataclass
class Settings:
    """Process-wide settings, read once at startup."""
    environment: str = 'development'
    service_version: str = '1.0.0'
    log_level: str = ''

    # Database configuration
    mongodb_uri: str = 'mongodb://localhost:27017/relief_dev'
    mongodb_database: str = 'relief_dev'
    mongodb_max_pool_size: int = 10
    mongodb_min_pool_size: int = 1
    mongodb_server_selection_timeout_ms: int = 5000

    # Cache and proximity policy
    cache_ttl_seconds: int = 3600
    default_search_radius_meters: float = 10000.0

    # Broadcast configuration
    broadcast_queue_size: int = 100
    amqp_url: str = ''
    amqp_broadcast_exchange: str = 'relief.broadcast'

    # Feature flags
    otel_enabled: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        return cls(
            environment=os.getenv('ENVIRONMENT', 'development'),
            service_version=os.getenv('SERVICE_VERSION', '1.0.0'),
            log_level=os.getenv('LOG_LEVEL', ''),
            mongodb_uri=os.getenv('MONGODB_URI', 'mongodb://localhost:27017/relief_dev'),
            mongodb_database=os.getenv('MONGODB_DATABASE', 'relief_dev'),
            mongodb_max_pool_size=int(os.getenv('MONGODB_MAX_POOL_SIZE', '10')),
            mongodb_min_pool_size=int(os.getenv('MONGODB_MIN_POOL_SIZE', '1')),
            mongodb_server_selection_timeout_ms=int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000')),
            cache_ttl_seconds=int(os.getenv('CACHE_TTL_SECONDS', '3600')),
            default_search_radius_meters=float(os.getenv('DEFAULT_SEARCH_RADIUS_METERS', '10000')),
            broadcast_queue_size=int(os.getenv('BROADCAST_QUEUE_SIZE', '100')),
            amqp_url=os.getenv('AMQP_URL', ''),
            amqp_broadcast_exchange=os.getenv('AMQP_BROADCAST_EXCHANGE', 'relief.broadcast'),
            otel_enabled=_env_bool('OTEL_ENABLED', 'true')
        )
