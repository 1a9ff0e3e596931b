"""
Test the SQL execution shim over SQLite

Statements, iterators, scalar helpers, status-returning variants,
transactions and busy handling.
"""

import sqlite3
from unittest.mock import patch

import pytest

from gvm_manager.db import SQLiteBackend, SQLStatus, StepResult, insert_literal, quote
from gvm_manager.db.sqlite import translate_error
from gvm_manager.errors import (
    DatabaseBusyError,
    DatabaseError,
    NoRowsError,
    QueryCancelledError,
    UniqueViolationError,
)


@pytest.fixture
def sample(db):
    db.execute("CREATE TABLE sample (id INTEGER PRIMARY KEY, v TEXT, n INTEGER, r REAL);")
    for v, n, r in (("a", 1, 1.5), ("b", 2, None), ("c", 3, 3.25)):
        db.execute("INSERT INTO sample (v, n, r) VALUES (?, ?, ?);", (v, n, r))
    return db


class TestStatements:
    """Prepared statements and column accessors"""

    def test_bind_and_step(self, sample):
        statement = sample.prepare("SELECT v, n, r FROM sample WHERE n = ?;")
        statement.bind(0, 2)

        assert statement.step() is StepResult.ROW
        assert statement.column_text(0) == "b"
        assert statement.column_int(1) == 2
        assert statement.column_is_null(2)
        assert statement.column_double(2) == 0.0
        assert statement.column_count() == 3

        assert statement.step() is StepResult.DONE
        assert statement.step() is StepResult.DONE
        statement.finalize()

    def test_bind_after_execution_fails(self, sample):
        statement = sample.prepare("SELECT v FROM sample WHERE n = ?;", (1,))
        statement.step()
        with pytest.raises(DatabaseError):
            statement.bind(0, 2)
        statement.finalize()

    def test_reset_allows_rerun(self, sample):
        statement = sample.prepare("SELECT count(*) FROM sample;")
        statement.step()
        assert statement.column_int(0) == 3
        statement.reset()
        assert statement.step() is StepResult.ROW
        assert statement.column_int64(0) == 3
        statement.finalize()

    def test_accessor_without_row_fails(self, sample):
        statement = sample.prepare("SELECT v FROM sample;")
        with pytest.raises(DatabaseError):
            statement.column_text(0)


class TestIterator:
    """Iterator done-flag semantics"""

    def test_next_false_once_then_stays_false(self, sample):
        iterator = sample.iterate("SELECT v FROM sample ORDER BY n;")
        seen = []
        while iterator.next():
            seen.append(iterator.column_text(0))

        assert seen == ["a", "b", "c"]
        assert iterator.done
        assert iterator.next() is False
        assert iterator.next() is False

    def test_accessors_fail_when_done(self, sample):
        iterator = sample.iterate("SELECT v FROM sample WHERE n > 10;")
        assert iterator.next() is False
        with pytest.raises(DatabaseError):
            iterator.column_text(0)

    def test_iteration_yields_rows(self, sample):
        with sample.iterate("SELECT v, n FROM sample ORDER BY n;") as iterator:
            rows = list(iterator)
        assert rows == [("a", 1), ("b", 2), ("c", 3)]

    def test_close_marks_done(self, sample):
        iterator = sample.iterate("SELECT v FROM sample;")
        assert iterator.next()
        iterator.close()
        assert iterator.next() is False


class TestHelpers:
    """Scalar and execution helpers"""

    def test_scalars(self, sample):
        assert sample.scalar_int("SELECT n FROM sample WHERE v = 'c';") == 3
        assert sample.scalar_double("SELECT r FROM sample WHERE v = 'c';") == 3.25
        assert sample.scalar_string("SELECT v FROM sample WHERE n = 1;") == "a"
        assert sample.scalar_int64("SELECT n FROM sample WHERE v = 'b';") == 2

    def test_scalars_without_rows(self, sample):
        with pytest.raises(NoRowsError):
            sample.scalar_int("SELECT n FROM sample WHERE v = 'z';")
        with pytest.raises(NoRowsError):
            sample.scalar_double("SELECT r FROM sample WHERE v = 'z';")
        assert sample.scalar_string("SELECT v FROM sample WHERE n = 99;") is None
        assert sample.scalar_int64("SELECT n FROM sample WHERE v = 'z';") is None

    def test_execute_returns_changes(self, sample):
        assert sample.execute("UPDATE sample SET n = n + 1 WHERE n < 3;") == 2
        assert sample.changes() == 2

    def test_last_insert_id(self, sample):
        sample.execute("INSERT INTO sample (v, n) VALUES ('d', 4);")
        assert sample.last_insert_id() == 4

    def test_unique_violation(self, db):
        db.execute("INSERT INTO meta (name, value) VALUES ('key', '1');")
        with pytest.raises(UniqueViolationError):
            db.execute("INSERT INTO meta (name, value) VALUES ('key', '2');")

    def test_execute_error_statuses(self, db):
        db.execute("INSERT INTO meta (name, value) VALUES ('key', '1');")
        assert db.execute_error("INSERT INTO meta (name, value) VALUES ('other', '1');") is SQLStatus.OK
        assert db.execute_error("INSERT INTO meta (name, value) VALUES ('key', '2');") is SQLStatus.UNIQUE_VIOLATION
        assert db.execute_error("INSERT INTO no_such_table VALUES (1);") is SQLStatus.ERROR

    def test_exists(self, sample):
        assert sample.exists("SELECT 1 FROM sample WHERE v = ?", ("a",))
        assert not sample.exists("SELECT 1 FROM sample WHERE v = ?", ("z",))

    def test_quote_and_insert_literal(self):
        assert quote("it's") == "it''s"
        assert insert_literal("it's") == "'it''s'"
        assert insert_literal(None) == "NULL"
        assert insert_literal(5) == "'5'"

    def test_quoted_literal_round_trips(self, sample):
        value = "O'Brien; DROP TABLE sample; --"
        sample.execute(f"INSERT INTO sample (v, n) VALUES ({insert_literal(value)}, 9);")
        assert sample.scalar_string("SELECT v FROM sample WHERE n = 9;") == value
        assert sample.scalar_int("SELECT count(*) FROM sample;") == 4

    def test_introspection(self, db):
        assert "permissions" in db.table_names()
        columns = {name: column_type for name, column_type, _ in db.table_columns("results")}
        assert columns["severity"] == "REAL"


class TestTransactions:
    """Transactions, rollback and atomic blocks"""

    def test_transaction_commits(self, sample):
        with sample.transaction():
            sample.execute("DELETE FROM sample WHERE n = 1;")
        assert not sample.in_transaction
        assert sample.scalar_int("SELECT count(*) FROM sample;") == 2

    def test_transaction_rolls_back_on_error(self, sample):
        with pytest.raises(RuntimeError):
            with sample.transaction():
                sample.execute("DELETE FROM sample;")
                raise RuntimeError("abort")
        assert not sample.in_transaction
        assert sample.scalar_int("SELECT count(*) FROM sample;") == 3

    def test_atomic_joins_open_transaction(self, sample):
        sample.begin_immediate()
        with sample.atomic():
            sample.execute("DELETE FROM sample WHERE n = 1;")
        assert sample.in_transaction
        sample.rollback()
        assert sample.scalar_int("SELECT count(*) FROM sample;") == 3

    def test_failed_commit_rolls_back(self, sample):
        with patch.object(sample, "commit", side_effect=DatabaseError("disk I/O error")):
            with pytest.raises(DatabaseError):
                with sample.transaction():
                    sample.execute("DELETE FROM sample;")
        assert not sample.in_transaction
        assert sample.scalar_int("SELECT count(*) FROM sample;") == 3


class TestBusy:
    """Contention between two connections"""

    def setup_method(self):
        self.other = None

    def teardown_method(self):
        if self.other is not None:
            self.other.close()

    def test_giveup_while_locked(self, db):
        self.other = SQLiteBackend(db.path, retries=2, busy_sleep=0.0001, busy_sleep_max=0.001)
        self.other.connect()

        db.begin_immediate()
        assert self.other.begin_immediate_giveup() is SQLStatus.GAVE_UP
        assert not self.other.in_transaction
        assert self.other.execute_giveup(
            "INSERT INTO meta (name, value) VALUES ('busy', '1');"
        ) is SQLStatus.GAVE_UP
        db.commit()

        assert self.other.begin_immediate_giveup() is SQLStatus.OK
        self.other.rollback()

    def test_translate_busy_and_interrupt(self):
        busy = translate_error(sqlite3.OperationalError("database is locked"), "SELECT 1;")
        interrupted = translate_error(sqlite3.OperationalError("interrupted"), "SELECT 1;")
        unique = translate_error(sqlite3.IntegrityError("UNIQUE constraint failed: meta.name"), "INSERT")
        other = translate_error(sqlite3.OperationalError("no such table: x"), "SELECT 1;")

        assert isinstance(busy, DatabaseBusyError)
        assert isinstance(interrupted, QueryCancelledError)
        assert isinstance(unique, UniqueViolationError)
        assert type(other) is DatabaseError

    def test_cancel_without_connection(self, tmp_path):
        backend = SQLiteBackend(tmp_path / "unused.db")
        backend.cancel()
