#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Script to remove expired cache rows.

Reads never depend on this sweep; it only keeps the cache collection small.
"""

import asyncio
import logging
import sys

from relief_api.config import Settings
from relief_api.services.cache import CacheService
from relief_api.services.mongodb import MongoDBService

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


async def run() -> int:
    settings = Settings.from_env()
    mongodb_service = MongoDBService.from_settings(settings)
    cache = CacheService(mongodb_service, ttl_seconds=settings.cache_ttl_seconds)
    try:
        removed = await cache.sweep_expired()
        logger.info(f"Removed {removed} expired cache entries")
        return 0
    except Exception as e:
        logger.error(f"Cache sweep failed: {e}")
        return 1
    finally:
        await mongodb_service.close_connection()


def main():
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
