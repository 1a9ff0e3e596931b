"""
Migration Runner

Brings the stored schema version up to the version the code expects by
applying an ordered, contiguous chain of transitions. Each transition runs
in its own exclusive transaction, re-checks its starting version before
touching anything, and advances the version by exactly one on commit.
The first failure aborts the run, leaving the database at the last
committed version.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Sequence

from ..acl.engine import sql_functions
from ..db.backend import DatabaseBackend
from ..db.schema import DATABASE_VERSION, create_tables, get_db_version, set_db_version
from ..errors import DatabaseError, MigrationError
from .feeds import FeedMigrator, FeedStatus
from .migration import Migration
from .migrations import MIGRATIONS, MIN_OLD_VERSION

logger = logging.getLogger(__name__)


class MigrateResult(int, Enum):
    """Outcome of a migration run."""
    SUCCESS = 0
    ALREADY_CURRENT = 1
    TOO_HARD = 2
    SCAP_CANNOT_MIGRATE = 11
    CERT_CANNOT_MIGRATE = 12
    ERROR = -1
    SCAP_ERROR = -11
    CERT_ERROR = -12


# Per-feed result codes: (cannot migrate, sync error)
FEED_RESULTS = {
    "scap": (MigrateResult.SCAP_CANNOT_MIGRATE, MigrateResult.SCAP_ERROR),
    "cert": (MigrateResult.CERT_CANNOT_MIGRATE, MigrateResult.CERT_ERROR),
}


class MigrationRunner:
    """Applies a migration chain and drives the feed migrations."""

    def __init__(
        self,
        db: DatabaseBackend,
        migrations: Optional[Sequence[Migration]] = None,
        target_version: int = DATABASE_VERSION,
        min_old_version: Optional[int] = None,
        feeds: Optional[Sequence[FeedMigrator]] = None,
    ):
        self.db = db
        self.migrations = {m.version: m for m in (migrations if migrations is not None else MIGRATIONS)}
        self.target_version = target_version
        self.min_old_version = MIN_OLD_VERSION if min_old_version is None else min_old_version
        self.feeds = list(feeds or [])

    def is_available(self, old_version: int, new_version: int) -> int:
        """
        Whether a complete chain exists from old_version to new_version.

        Returns 1 if it does, 0 if the old version is too old or a
        transition on the path has no function, -1 if the chain ends early.
        """
        if old_version < self.min_old_version:
            return 0
        for version in range(old_version + 1, new_version + 1):
            migration = self.migrations.get(version)
            if migration is None:
                return -1
            if migration.function is None:
                return 0
        return 1

    def verify_checksums(self) -> list[int]:
        """Versions whose logged checksum no longer matches the registered migration."""
        mismatched = []
        if "migrations" not in self.db.table_names():
            return mismatched
        for version, checksum in self.db.fetch_all(
            "SELECT version, checksum FROM migrations ORDER BY version;"
        ):
            migration = self.migrations.get(version)
            if migration is not None and migration.checksum != checksum:
                logger.error(f"Checksum mismatch for applied migration {version} ({migration.name})")
                mismatched.append(version)
        return mismatched

    def migrate_schema(self) -> Optional[MigrateResult]:
        """
        Migrate the main schema.

        Returns None when the schema is (now) current, or the failure result.
        """
        old_version = get_db_version(self.db)
        new_version = self.target_version

        if old_version == -1:
            return MigrateResult.ERROR

        if old_version == -2:
            logger.warning("No tables yet, so no need to migrate them")
            return None

        if old_version == new_version:
            return None

        if old_version > new_version:
            logger.error(f"Database version {old_version} is newer than supported version {new_version}")
            return MigrateResult.ERROR

        available = self.is_available(old_version, new_version)
        if available == -1:
            return MigrateResult.ERROR
        if available == 0:
            logger.warning(f"No migration path from version {old_version} to {new_version}")
            return MigrateResult.TOO_HARD

        for version in range(old_version + 1, new_version + 1):
            migration = self.migrations[version]
            logger.info(f"   Migrating to {version}")
            try:
                migration.apply(self.db)
            except (MigrationError, DatabaseError) as e:
                logger.error(f"Migration aborted: {e}")
                return MigrateResult.ERROR

        return None

    def migrate(self) -> MigrateResult:
        """Migrate the schema, then the feeds. Distinct results per failing stage."""
        schema_version = get_db_version(self.db)
        version_current = schema_version in (-2, self.target_version)

        # A tampered log aborts before anything is written on top of it
        if self.verify_checksums():
            return MigrateResult.ERROR

        failure = self.migrate_schema()
        if failure is not None:
            return failure

        feeds_current = True
        for feed in self.feeds:
            cannot_migrate, sync_error = FEED_RESULTS[feed.name]
            status = feed.migrate()
            if status in (FeedStatus.TOO_NEW, FeedStatus.RUNNING):
                return cannot_migrate
            if status is FeedStatus.ERROR:
                return sync_error
            if status is FeedStatus.MIGRATED:
                feeds_current = False

        if version_current and feeds_current:
            return MigrateResult.ALREADY_CURRENT

        self.db.execute("ANALYZE;")
        return MigrateResult.SUCCESS


def create_database(db: DatabaseBackend, version: int = DATABASE_VERSION) -> None:
    """Create the canonical schema of `version` on an empty database."""
    with db.atomic():
        create_tables(db, version)
        db.create_functions(sql_functions())
        set_db_version(db, version)
    logger.info(f"Created database at version {version}")
