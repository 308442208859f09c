#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Script to create the geospatial and lookup indexes.
"""

import asyncio
import logging
import sys

from relief_api.config import Settings
from relief_api.services.mongodb import MongoDBService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


async def create_indexes(mongodb_service: MongoDBService) -> None:
    health = await mongodb_service.health_check()
    if health['status'] != 'healthy':
        raise RuntimeError(f"MongoDB is not healthy: {health}")

    logger.info(f"Connected to MongoDB {health['version']} - Database: {health['database']}")
    await mongodb_service.create_indexes()


async def run() -> int:
    mongodb_service = MongoDBService.from_settings(Settings.from_env())
    try:
        logger.info("Starting MongoDB index creation...")
        await create_indexes(mongodb_service)
        logger.info("MongoDB indexes created successfully!")
        return 0
    except Exception as e:
        logger.error(f"Failed to create indexes: {e}")
        return 1
    finally:
        await mongodb_service.close_connection()


def main():
    """Create MongoDB indexes."""
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
