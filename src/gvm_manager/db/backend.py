"""
SQL Execution Shim

One statement/iterator API over the embedded engine (SQLite) and the
client/server engine (PostgreSQL). Callers write portable SQL with `?`
placeholders; backends absorb busy retries, boolean typing, exclusive
transactions and cancellation.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator as TypingIterator, Optional, Sequence

from ..errors import (
    DatabaseBusyError,
    DatabaseError,
    GaveUpError,
    LockUnavailableError,
    NoRowsError,
    QueryCancelledError,
    UniqueViolationError,
)

logger = logging.getLogger(__name__)


class SQLStatus(int, Enum):
    """Status codes of the status-returning execution variants."""
    OK = 0
    GAVE_UP = 1
    LOCK_UNAVAILABLE = 2
    UNIQUE_VIOLATION = 3
    ERROR = -1


class StepResult(str, Enum):
    """Outcome of advancing a statement by one row."""
    ROW = "row"
    DONE = "done"


def quote(value: str) -> str:
    """Double every apostrophe so the value can sit inside a SQL literal."""
    return value.replace("'", "''")


def insert_literal(value: Optional[Any]) -> str:
    """Render a value as a quoted SQL literal, or NULL."""
    if value is None:
        return "NULL"
    return f"'{quote(str(value))}'"


class Statement:
    """
    A prepared statement.

    Parameters may be bound by zero-based position until the first step.
    Execution happens lazily on the first step; each later step fetches
    the next row.
    """

    def __init__(self, backend: "DatabaseBackend", sql: str, params: Sequence[Any] = ()):
        self.backend = backend
        self.sql = sql
        self.params = list(params)
        self._cursor = None
        self._row: Optional[tuple] = None
        self.done = False

    @property
    def executed(self) -> bool:
        return self._cursor is not None

    def bind(self, position: int, value: Any) -> None:
        """Bind a value to the parameter at the zero-based position."""
        if self.executed:
            raise DatabaseError("Cannot bind to an executed statement", self.sql)
        while len(self.params) <= position:
            self.params.append(None)
        self.params[position] = value

    def step(self) -> StepResult:
        """Advance to the next row, executing the statement on first use."""
        if self.done:
            return StepResult.DONE
        if self._cursor is None:
            self._cursor = self.backend._run(self.sql, self.params)
        row = self.backend._fetch(self._cursor, self.sql)
        if row is None:
            self.done = True
            self._row = None
            return StepResult.DONE
        self._row = row
        return StepResult.ROW

    def reset(self) -> None:
        """Forget the current execution so the statement can be stepped again."""
        self._close_cursor()
        self._row = None
        self.done = False

    def finalize(self) -> None:
        """Release the underlying cursor."""
        self._close_cursor()
        self._row = None
        self.done = True

    def _close_cursor(self) -> None:
        if self._cursor is not None:
            self._cursor.close()
            self._cursor = None

    def _value(self, position: int) -> Any:
        if self._row is None:
            raise DatabaseError("Statement has no current row", self.sql)
        return self._row[position]

    def column_count(self) -> int:
        return 0 if self._row is None else len(self._row)

    def column_is_null(self, position: int) -> bool:
        return self._value(position) is None

    def column_int(self, position: int) -> int:
        value = self._value(position)
        return 0 if value is None else int(value)

    def column_int64(self, position: int) -> int:
        return self.column_int(position)

    def column_double(self, position: int) -> float:
        value = self._value(position)
        return 0.0 if value is None else float(value)

    def column_text(self, position: int) -> Optional[str]:
        value = self._value(position)
        return None if value is None else str(value)

    def row(self) -> tuple:
        if self._row is None:
            raise DatabaseError("Statement has no current row", self.sql)
        return self._row


class Iterator:
    """
    A prepared, executed statement paired with a done flag.

    `next()` returns False exactly once the underlying statement reports
    completion, and keeps returning False afterwards. Column accessors
    raise once the iterator is done.
    """

    def __init__(self, statement: Statement):
        self.statement = statement
        self.done = False

    def next(self) -> bool:
        if self.done:
            return False
        if self.statement.step() is StepResult.DONE:
            self.done = True
            self.statement.finalize()
            return False
        return True

    def _check(self) -> Statement:
        if self.done:
            raise DatabaseError("Iterator is exhausted", self.statement.sql)
        return self.statement

    def column_int(self, position: int) -> int:
        return self._check().column_int(position)

    def column_int64(self, position: int) -> int:
        return self._check().column_int64(position)

    def column_double(self, position: int) -> float:
        return self._check().column_double(position)

    def column_text(self, position: int) -> Optional[str]:
        return self._check().column_text(position)

    def is_null(self, position: int) -> bool:
        return self._check().column_is_null(position)

    def row(self) -> tuple:
        return self._check().row()

    def close(self) -> None:
        if not self.done:
            self.done = True
            self.statement.finalize()

    def __iter__(self) -> TypingIterator[tuple]:
        while self.next():
            yield self.statement.row()

    def __enter__(self) -> "Iterator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class DatabaseBackend(ABC):
    """
    Abstract database backend.

    Subclasses provide the raw connection handling, error translation and
    the dialect pieces (type names, exclusive transactions, cancellation).
    Everything else lives here so callers stay backend-agnostic.
    """

    name: str = "abstract"

    # Column type names for the declarative schema
    type_names: dict[str, str] = {}

    def __init__(
        self,
        retries: int = 10,
        busy_sleep: float = 0.001,
        busy_sleep_max: float = 0.5,
    ):
        self.retries = retries
        self.busy_sleep = busy_sleep
        self.busy_sleep_max = busy_sleep_max
        self.in_transaction = False
        self._changes = 0

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def connect(self) -> None:
        """Open the connection."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection."""

    @abstractmethod
    def _execute_raw(self, sql: str, params: Sequence[Any]):
        """
        Execute once and return the cursor.

        Raises DatabaseBusyError for transient contention and the other
        DatabaseError subclasses for everything else.
        """

    def _fetch(self, cursor, sql: str) -> Optional[tuple]:
        """Fetch the next row from an executed cursor."""
        if cursor.description is None:
            return None
        return cursor.fetchone()

    @abstractmethod
    def _begin_immediate_sql(self) -> list[str]:
        """Statements that open a write-exclusive transaction."""

    @abstractmethod
    def last_insert_id(self) -> int:
        """Row id of the most recent insert on this connection."""

    @abstractmethod
    def cancel(self) -> None:
        """Cancel the statement currently running on this connection."""

    @abstractmethod
    def table_columns(self, table: str) -> list[tuple[str, str, Optional[str]]]:
        """(name, type, default) of every column of a table."""

    @abstractmethod
    def table_names(self) -> list[str]:
        """Names of all user tables."""

    def reset_sequence(self, table: str) -> None:
        """Re-sync the id sequence of a table after rows were copied in with explicit ids."""

    def create_functions(self, functions: dict[str, str]) -> None:
        """Install SQL functions. Engines without server-side SQL functions skip this."""
        logger.debug(f"{self.name}: no SQL functions installed ({len(functions)} skipped)")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _busy_wait(self, attempt: int) -> None:
        # The first few retries spin; later ones back off.
        if attempt <= self.retries:
            return
        delay = min(self.busy_sleep * (2 ** (attempt - self.retries)), self.busy_sleep_max)
        time.sleep(delay)

    def _run(self, sql: str, params: Sequence[Any] = (), retry: Optional[int] = None):
        """
        Execute with busy retry.

        With retry=None busy errors are retried forever; otherwise
        GaveUpError is raised after `retry` retries.
        """
        attempt = 0
        while True:
            try:
                return self._execute_raw(sql, params)
            except DatabaseBusyError:
                attempt += 1
                if retry is not None and attempt > retry:
                    logger.debug(f"Gave up after {retry} busy retries: {sql}")
                    raise GaveUpError(f"Database busy, gave up after {retry} retries", sql)
                self._busy_wait(attempt)

    def prepare(self, sql: str, params: Sequence[Any] = ()) -> Statement:
        return Statement(self, sql, params)

    def iterate(self, sql: str, params: Sequence[Any] = ()) -> Iterator:
        """Prepare a statement and wrap it in an iterator."""
        return Iterator(self.prepare(sql, params))

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """
        Execute a statement, retrying while the database is busy.

        Returns the number of rows affected. Raises DatabaseError on failure.
        """
        cursor = self._run(sql, params)
        try:
            self._changes = max(cursor.rowcount, 0)
            return self._changes
        finally:
            cursor.close()

    def changes(self) -> int:
        """Rows affected by the most recent `execute`."""
        return self._changes

    def execute_script(self, statements: Sequence[str]) -> None:
        for sql in statements:
            self.execute(sql)

    def execute_error(self, sql: str, params: Sequence[Any] = ()) -> SQLStatus:
        """Execute a statement, reporting failure as a status instead of raising."""
        try:
            self.execute(sql, params)
        except LockUnavailableError:
            return SQLStatus.LOCK_UNAVAILABLE
        except UniqueViolationError:
            return SQLStatus.UNIQUE_VIOLATION
        except DatabaseError:
            return SQLStatus.ERROR
        return SQLStatus.OK

    def execute_giveup(self, sql: str, params: Sequence[Any] = ()) -> SQLStatus:
        """Execute a statement, giving up after the configured busy retries."""
        try:
            cursor = self._run(sql, params, retry=self.retries)
        except GaveUpError:
            return SQLStatus.GAVE_UP
        except DatabaseError:
            return SQLStatus.ERROR
        cursor.close()
        return SQLStatus.OK

    def _first_row(self, sql: str, params: Sequence[Any]) -> Optional[tuple]:
        statement = self.prepare(sql, params)
        try:
            if statement.step() is StepResult.DONE:
                return None
            return statement.row()
        finally:
            statement.finalize()

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        return self._first_row(sql, params)

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        with self.iterate(sql, params) as iterator:
            return list(iterator)

    def scalar_int(self, sql: str, params: Sequence[Any] = ()) -> int:
        """First column of the first row as int. Raises NoRowsError if there is no row."""
        row = self._first_row(sql, params)
        if row is None:
            raise NoRowsError("Query returned no rows", sql)
        return 0 if row[0] is None else int(row[0])

    def scalar_double(self, sql: str, params: Sequence[Any] = ()) -> float:
        row = self._first_row(sql, params)
        if row is None:
            raise NoRowsError("Query returned no rows", sql)
        return 0.0 if row[0] is None else float(row[0])

    def scalar_int64(self, sql: str, params: Sequence[Any] = ()) -> Optional[int]:
        """First column of the first row as int, or None if there is no row."""
        row = self._first_row(sql, params)
        if row is None or row[0] is None:
            return None
        return int(row[0])

    def scalar_string(self, sql: str, params: Sequence[Any] = ()) -> Optional[str]:
        """First column of the first row as str, or None if there is no row or it is NULL."""
        row = self._first_row(sql, params)
        if row is None or row[0] is None:
            return None
        return str(row[0])

    def exists(self, sql: str, params: Sequence[Any] = ()) -> bool:
        return self._first_row(sql, params) is not None

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin(self) -> None:
        self.execute("BEGIN;")
        self.in_transaction = True

    def _begin_immediate(self, retry: Optional[int]) -> None:
        statements = self._begin_immediate_sql()
        self._run(statements[0], retry=retry).close()
        self.in_transaction = True
        # Lock statements run inside the open transaction; a failure must not leave it open.
        try:
            for sql in statements[1:]:
                self._run(sql, retry=retry).close()
        except DatabaseError:
            self.rollback()
            raise

    def begin_immediate(self) -> None:
        """Open a write-exclusive transaction, waiting as long as needed."""
        self._begin_immediate(retry=None)

    def begin_immediate_giveup(self) -> SQLStatus:
        """Open a write-exclusive transaction, giving up after bounded retries."""
        try:
            self._begin_immediate(retry=self.retries)
        except GaveUpError:
            return SQLStatus.GAVE_UP
        except DatabaseError:
            return SQLStatus.ERROR
        return SQLStatus.OK

    def commit(self) -> None:
        self._run("COMMIT;").close()
        self.in_transaction = False

    def rollback(self) -> None:
        self._run("ROLLBACK;").close()
        self.in_transaction = False

    @contextmanager
    def transaction(self):
        """Run the block in a write-exclusive transaction, rolling back on error."""
        self.begin_immediate()
        try:
            yield self
            self.commit()
        except BaseException:
            if self.in_transaction:
                self.rollback()
            raise

    @contextmanager
    def atomic(self):
        """Join the open transaction, or run the block in a new one."""
        if self.in_transaction:
            yield self
        else:
            with self.transaction():
                yield self

    # ------------------------------------------------------------------
    # Quoting
    # ------------------------------------------------------------------

    @staticmethod
    def quote(value: str) -> str:
        return quote(value)

    @staticmethod
    def insert_literal(value: Optional[Any]) -> str:
        return insert_literal(value)

    def __enter__(self) -> "DatabaseBackend":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def log_sql_error(sql: str, error: Exception) -> None:
    """Log a failed statement, staying quiet about deliberate cancellation."""
    if isinstance(error, QueryCancelledError):
        logger.debug(f"Query cancelled: {sql}")
    else:
        logger.warning(f"SQL error: {error}. Statement: {sql}")
