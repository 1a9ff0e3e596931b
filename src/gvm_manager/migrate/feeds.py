"""
Feed Migration

The SCAP and CERT databases carry their own version in the meta table.
When the stored version lags the supported one, the external feed sync
tool is asked to rebuild them.
"""

from __future__ import annotations

import logging
import subprocess
from enum import Enum

from ..config.schema import FeedConfig
from ..db.backend import DatabaseBackend
from ..db.schema import get_meta

logger = logging.getLogger(__name__)


class FeedStatus(str, Enum):
    CURRENT = "current"
    MIGRATED = "migrated"
    TOO_NEW = "too_new"
    RUNNING = "running"
    ERROR = "error"


class FeedMigrator:
    """Checks and migrates one feed database ("scap" or "cert")."""

    def __init__(self, name: str, db: DatabaseBackend, config: FeedConfig):
        self.name = name
        self.db = db
        self.config = config

    def current_version(self) -> int:
        """Stored feed version, or -1 if the feed database is absent."""
        if "meta" not in self.db.table_names():
            return -1
        value = get_meta(self.db, f"{self.name}_database_version")
        if value is None:
            return -1
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Invalid {self.name.upper()} database version: {value!r}")
            return -1

    def migrate(self) -> FeedStatus:
        old_version = self.current_version()
        new_version = self.config.supported_version

        if old_version == new_version:
            return FeedStatus.CURRENT

        if old_version == -1:
            logger.debug(f"No {self.name.upper()} database present")
            return FeedStatus.CURRENT

        if old_version > new_version:
            logger.error(
                f"{self.name.upper()} database version {old_version} is newer"
                f" than supported version {new_version}"
            )
            return FeedStatus.TOO_NEW

        return self._sync()

    def _sync(self) -> FeedStatus:
        command = self.config.sync_command
        if not command:
            logger.error(f"No sync command configured for the {self.name.upper()} feed")
            return FeedStatus.ERROR

        logger.info(f"Migrating {self.name.upper()} database: {' '.join(command)}")
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.config.timeout,
            )
        except FileNotFoundError:
            logger.error(f"{self.name.upper()} sync command not found: {command[0]}")
            return FeedStatus.ERROR
        except subprocess.TimeoutExpired:
            logger.error(f"{self.name.upper()} sync timed out after {self.config.timeout}s")
            return FeedStatus.ERROR

        if completed.returncode == 0:
            return FeedStatus.MIGRATED
        if completed.returncode == 1:
            logger.warning(f"{self.name.upper()} sync is already running")
            return FeedStatus.RUNNING
        logger.error(
            f"{self.name.upper()} sync failed with status {completed.returncode}:"
            f" {completed.stderr.strip()}"
        )
        return FeedStatus.ERROR
