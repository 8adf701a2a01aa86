"""
Database module for ADL contributions
Storage contract plus in-memory and PostgreSQL backends
"""

import logging
from typing import Optional

from adl.core.config import Settings, settings as default_settings
from .base import StorageStore
from .memory import MemoryStore

logger = logging.getLogger(__name__)


def build_store(config: Optional[Settings] = None) -> StorageStore:
    """
    Construct the configured storage backend.

    Args:
        config: Settings to read the driver and URL from

    Returns:
        A new StorageStore owned by the caller
    """
    config = config or default_settings
    driver = config.resolved_store_driver
    if driver == "postgres":
        from .connection import DatabaseConnection
        from .postgres import PostgresStore

        logger.info("Using PostgreSQL storage")
        return PostgresStore(DatabaseConnection(
            database_url=config.database_url,
            pool_size=config.postgres_pool_max,
            query_timeout_ms=config.postgres_query_timeout_ms,
        ))

    logger.info("Using in-memory storage")
    return MemoryStore()


__all__ = [
    "StorageStore",
    "MemoryStore",
    "build_store",
]
