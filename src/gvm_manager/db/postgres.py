"""
PostgreSQL backend for the SQL execution shim.

The client/server engine has no transient busy error, so statements pass
straight through. Exclusive transactions are emulated with a transaction
scoped advisory lock, booleans are normalised to 0/1, and SQLSTATEs are
mapped onto the shim's exception hierarchy.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import psycopg2

from ..errors import (
    DatabaseError,
    LockUnavailableError,
    QueryCancelledError,
    UniqueViolationError,
)
from .backend import DatabaseBackend, log_sql_error

logger = logging.getLogger(__name__)

# SQLSTATE codes the shim distinguishes
QUERY_CANCELED = "57014"
LOCK_NOT_AVAILABLE = "55P03"
UNIQUE_VIOLATION = "23505"

# Key of the advisory lock that serialises write-exclusive transactions
EXCLUSIVE_LOCK_KEY = 0x67766D64


def convert_placeholders(sql: str) -> str:
    """
    Convert `?` placeholders to psycopg2's `%s`.

    Literal percent signs are doubled. Question marks inside quoted
    literals are left alone.
    """
    out = []
    in_quote = False
    for char in sql:
        if char == "'":
            in_quote = not in_quote
            out.append(char)
        elif char == "%":
            out.append("%%")
        elif char == "?" and not in_quote:
            out.append("%s")
        else:
            out.append(char)
    return "".join(out)


def translate_error(error: psycopg2.Error, sql: str) -> DatabaseError:
    """Map a psycopg2 exception onto the shim's exception hierarchy."""
    message = str(error).strip() or error.__class__.__name__
    code = getattr(error, "pgcode", None)
    if code == QUERY_CANCELED:
        return QueryCancelledError(message, sql, {"sqlstate": code})
    if code == LOCK_NOT_AVAILABLE:
        return LockUnavailableError(message, sql, {"sqlstate": code})
    if code == UNIQUE_VIOLATION:
        return UniqueViolationError(message, sql, {"sqlstate": code})
    return DatabaseError(message, sql, {"sqlstate": code} if code else None)


class PostgreSQLBackend(DatabaseBackend):
    """DatabaseBackend over psycopg2."""

    name = "postgresql"

    type_names = {
        "id": "SERIAL PRIMARY KEY",
        "integer": "INTEGER",
        "text": "TEXT",
        "real": "DOUBLE PRECISION",
    }

    def __init__(self, dsn: str, **kwargs):
        super().__init__(**kwargs)
        self.dsn = dsn
        self.connection = None

    def connect(self) -> None:
        if self.connection is not None:
            return
        try:
            self.connection = psycopg2.connect(self.dsn)
        except psycopg2.Error as e:
            logger.error(f"Failed to connect to PostgreSQL: {e}")
            raise DatabaseError(f"Failed to connect to PostgreSQL: {e}") from e
        # Transactions are opened explicitly with BEGIN.
        self.connection.autocommit = True
        logger.debug("Opened PostgreSQL connection")

    def close(self) -> None:
        if self.connection is not None:
            self.connection.close()
            self.connection = None
            self.in_transaction = False
            logger.debug("Closed PostgreSQL connection")

    def _connection(self):
        if self.connection is None:
            self.connect()
        return self.connection

    def _execute_raw(self, sql: str, params: Sequence[Any]):
        cursor = self._connection().cursor()
        try:
            if params:
                cursor.execute(convert_placeholders(sql), tuple(params))
            else:
                cursor.execute(sql)
        except psycopg2.Error as e:
            cursor.close()
            error = translate_error(e, sql)
            log_sql_error(sql, error)
            raise error from e
        return cursor

    def _fetch(self, cursor, sql: str) -> Optional[tuple]:
        if cursor.description is None:
            return None
        try:
            row = cursor.fetchone()
        except psycopg2.Error as e:
            error = translate_error(e, sql)
            log_sql_error(sql, error)
            raise error from e
        if row is None:
            return None
        return tuple(int(value) if isinstance(value, bool) else value for value in row)

    def _begin_immediate_sql(self) -> list[str]:
        return ["BEGIN;", f"SELECT pg_advisory_xact_lock({EXCLUSIVE_LOCK_KEY});"]

    def last_insert_id(self) -> int:
        return self.scalar_int("SELECT lastval();")

    def cancel(self) -> None:
        if self.connection is not None:
            self.connection.cancel()

    def table_columns(self, table: str) -> list[tuple[str, str, Optional[str]]]:
        rows = self.fetch_all(
            "SELECT column_name, upper(data_type), column_default"
            " FROM information_schema.columns"
            " WHERE table_schema = current_schema() AND table_name = ?"
            " ORDER BY ordinal_position;",
            (table,),
        )
        return [(row[0], row[1], row[2]) for row in rows]

    def table_names(self) -> list[str]:
        rows = self.fetch_all(
            "SELECT table_name FROM information_schema.tables"
            " WHERE table_schema = current_schema()"
            " ORDER BY table_name;"
        )
        return [row[0] for row in rows]

    def reset_sequence(self, table: str) -> None:
        self.execute(
            f"SELECT setval(pg_get_serial_sequence('{table}', 'id'),"
            f" COALESCE(max(id), 0) + 1, false) FROM {table};"
        )

    def create_functions(self, functions: dict[str, str]) -> None:
        for name, definition in functions.items():
            logger.debug(f"Creating SQL function {name}")
            self.execute(definition)
