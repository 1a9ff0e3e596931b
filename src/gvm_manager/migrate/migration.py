"""
A single schema transition.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..db.backend import DatabaseBackend
from ..db.schema import get_db_version, set_db_version
from ..errors import MigrationError, MigrationPreconditionError

logger = logging.getLogger(__name__)


@dataclass
class Migration:
    """
    One transition, producing `version` from `version - 1`.

    A migration without a function marks a transition with no automatic
    path ("too hard").
    """
    version: int
    name: str
    function: Optional[Callable[[DatabaseBackend], None]] = None
    checksum: str = field(init=False, default="")

    def __post_init__(self):
        self.checksum = self._compute_checksum()

    @property
    def from_version(self) -> int:
        return self.version - 1

    def _compute_checksum(self) -> str:
        # Version and name only; the payload source is not part of it.
        if self.function is None:
            return ""
        return hashlib.sha256(f"{self.version}:{self.name}".encode()).hexdigest()

    def apply(self, db: DatabaseBackend) -> None:
        """
        Run the transition in an exclusive transaction.

        Raises MigrationPreconditionError, leaving the database untouched,
        if the stored version is not `from_version`. Any failure of the
        payload rolls the transaction back and is raised as MigrationError.
        """
        if self.function is None:
            raise MigrationError(f"No migrator to version {self.version}", self.version)

        db.begin_immediate()
        try:
            current = get_db_version(db)
            if current != self.from_version:
                raise MigrationPreconditionError(
                    f"Database is at version {current}, expected {self.from_version}",
                    self.version,
                )
            self.function(db)
            db.execute(
                "INSERT INTO migrations (version, name, checksum, applied_at)"
                " VALUES (?, ?, ?, ?);",
                (self.version, self.name, self.checksum, int(time.time())),
            )
            set_db_version(db, self.version)
            db.commit()
        except MigrationError:
            if db.in_transaction:
                db.rollback()
            raise
        except Exception as e:
            if db.in_transaction:
                db.rollback()
            raise MigrationError(f"Migration to version {self.version} failed: {e}", self.version) from e
        logger.debug(f"Committed migration {self.version} ({self.name})")


def migration(version: int, name: str, registry: list[Migration]):
    """Decorator registering a payload as the transition to `version`."""
    def decorator(function: Callable[[DatabaseBackend], None]):
        registry.append(Migration(version, name, function))
        return function
    return decorator
