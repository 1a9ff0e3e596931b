"""
SQLite backend for the SQL execution shim.

The embedded engine reports transient contention as "database is locked";
those errors are retried by the shim. Exclusive transactions use the
engine's native BEGIN IMMEDIATE.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from ..errors import (
    DatabaseBusyError,
    DatabaseError,
    QueryCancelledError,
    UniqueViolationError,
)
from .backend import DatabaseBackend, log_sql_error

logger = logging.getLogger(__name__)

BUSY_MESSAGES = ("database is locked", "database table is locked", "database is busy")


def translate_error(error: sqlite3.Error, sql: str) -> DatabaseError:
    """Map a sqlite3 exception onto the shim's exception hierarchy."""
    message = str(error)
    lowered = message.lower()
    if isinstance(error, sqlite3.OperationalError):
        if any(busy in lowered for busy in BUSY_MESSAGES):
            return DatabaseBusyError(message, sql)
        if "interrupted" in lowered:
            return QueryCancelledError(message, sql)
    if isinstance(error, sqlite3.IntegrityError) and "unique" in lowered:
        return UniqueViolationError(message, sql)
    return DatabaseError(message, sql)


class SQLiteBackend(DatabaseBackend):
    """DatabaseBackend over the standard library sqlite3 module."""

    name = "sqlite"

    type_names = {
        "id": "INTEGER PRIMARY KEY",
        "integer": "INTEGER",
        "text": "TEXT",
        "real": "REAL",
    }

    def __init__(
        self,
        path: Union[str, Path] = ":memory:",
        retries: int = 10,
        busy_sleep: float = 0.001,
        busy_sleep_max: float = 0.5,
    ):
        super().__init__(retries=retries, busy_sleep=busy_sleep, busy_sleep_max=busy_sleep_max)
        self.path = str(path)
        self.connection: Optional[sqlite3.Connection] = None

    def connect(self) -> None:
        if self.connection is not None:
            return
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        # timeout=0 surfaces contention immediately; the shim owns the retry loop.
        self.connection = sqlite3.connect(
            self.path,
            timeout=0,
            isolation_level=None,
            check_same_thread=False,
        )
        self.connection.execute("PRAGMA foreign_keys = OFF;")
        logger.debug(f"Opened SQLite database {self.path}")

    def close(self) -> None:
        if self.connection is not None:
            self.connection.close()
            self.connection = None
            self.in_transaction = False
            logger.debug(f"Closed SQLite database {self.path}")

    def _connection(self) -> sqlite3.Connection:
        if self.connection is None:
            self.connect()
        return self.connection

    def _execute_raw(self, sql: str, params: Sequence[Any]):
        cursor = self._connection().cursor()
        try:
            cursor.execute(sql, tuple(params))
        except sqlite3.Error as e:
            cursor.close()
            error = translate_error(e, sql)
            if not isinstance(error, DatabaseBusyError):
                log_sql_error(sql, error)
            raise error from e
        return cursor

    def _fetch(self, cursor, sql: str) -> Optional[tuple]:
        if cursor.description is None:
            return None
        attempt = 0
        while True:
            try:
                return cursor.fetchone()
            except sqlite3.Error as e:
                error = translate_error(e, sql)
                if not isinstance(error, DatabaseBusyError):
                    log_sql_error(sql, error)
                    raise error from e
                attempt += 1
                self._busy_wait(attempt)

    def _begin_immediate_sql(self) -> list[str]:
        return ["BEGIN IMMEDIATE;"]

    def last_insert_id(self) -> int:
        return self.scalar_int("SELECT last_insert_rowid();")

    def cancel(self) -> None:
        if self.connection is not None:
            self.connection.interrupt()

    def table_columns(self, table: str) -> list[tuple[str, str, Optional[str]]]:
        rows = self.fetch_all(f'PRAGMA table_info("{table}");')
        return [(row[1], row[2], row[4]) for row in rows]

    def table_names(self) -> list[str]:
        rows = self.fetch_all(
            "SELECT name FROM sqlite_master"
            " WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
            " ORDER BY name;"
        )
        return [row[0] for row in rows]
