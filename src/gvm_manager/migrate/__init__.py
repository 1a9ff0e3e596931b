"""
Migration Runner and feed migration.
"""

from __future__ import annotations

import logging

from ..config.schema import ManagerConfig
from ..db.factory import get_database_backend
from .feeds import FeedMigrator, FeedStatus
from .migration import Migration, migration
from .migrations import MIGRATIONS, MIN_OLD_VERSION
from .runner import FEED_RESULTS, MigrateResult, MigrationRunner, create_database

logger = logging.getLogger(__name__)


def migrate(config: ManagerConfig) -> MigrateResult:
    """Open the configured database and migrate it and its feeds."""
    with get_database_backend(config) as db:
        feeds = [FeedMigrator(name, db, config.get_feed(name)) for name in FEED_RESULTS]
        result = MigrationRunner(db, feeds=feeds).migrate()
    logger.info(f"Migration finished: {result.name}")
    return result


__all__ = [
    "FEED_RESULTS",
    "FeedMigrator",
    "FeedStatus",
    "MIGRATIONS",
    "MIN_OLD_VERSION",
    "MigrateResult",
    "Migration",
    "MigrationRunner",
    "create_database",
    "migrate",
    "migration",
]
