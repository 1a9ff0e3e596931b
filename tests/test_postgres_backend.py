"""
Test the PostgreSQL backend against a mocked psycopg2 connection
"""

from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from gvm_manager.config import DatabaseConfig, ManagerConfig
from gvm_manager.db import SQLStatus, get_database_backend
from gvm_manager.db.postgres import (
    EXCLUSIVE_LOCK_KEY,
    PostgreSQLBackend,
    convert_placeholders,
    translate_error,
)
from gvm_manager.errors import (
    DatabaseError,
    LockUnavailableError,
    QueryCancelledError,
    UniqueViolationError,
)


class _Cancelled(psycopg2.Error):
    pgcode = "57014"


class _LockNotAvailable(psycopg2.Error):
    pgcode = "55P03"


class _UniqueViolation(psycopg2.Error):
    pgcode = "23505"


class TestPlaceholders:

    def test_question_marks_become_format_markers(self):
        assert convert_placeholders("SELECT * FROM t WHERE a = ? AND b = ?;") == \
            "SELECT * FROM t WHERE a = %s AND b = %s;"

    def test_quoted_question_marks_are_kept(self):
        assert convert_placeholders("SELECT '?' WHERE a = ?;") == "SELECT '?' WHERE a = %s;"

    def test_percent_signs_are_doubled(self):
        assert convert_placeholders("SELECT 1 WHERE name LIKE '%x' AND a = ?;") == \
            "SELECT 1 WHERE name LIKE '%%x' AND a = %s;"


class TestPostgreSQLBackend:
    """Backend behaviour with psycopg2 mocked out"""

    def setup_method(self):
        self.connection = MagicMock()
        self.cursor = MagicMock()
        self.cursor.description = None
        self.cursor.rowcount = 1
        self.connection.cursor.return_value = self.cursor
        self.patcher = patch("gvm_manager.db.postgres.psycopg2.connect", return_value=self.connection)
        self.connect = self.patcher.start()
        self.db = PostgreSQLBackend("dbname=gvmd")

    def teardown_method(self):
        self.patcher.stop()

    def test_connect_enables_autocommit(self):
        self.db.connect()
        self.connect.assert_called_once_with("dbname=gvmd")
        assert self.connection.autocommit is True

    def test_parameters_are_converted(self):
        self.db.execute("UPDATE t SET a = ? WHERE name LIKE '%x';", (5,))
        self.cursor.execute.assert_called_once_with("UPDATE t SET a = %s WHERE name LIKE '%%x';", (5,))

    def test_statements_without_parameters_pass_through(self):
        self.db.execute("SELECT '50%';")
        self.cursor.execute.assert_called_once_with("SELECT '50%';")

    def test_booleans_are_normalised(self):
        self.cursor.description = [("a",), ("b",)]
        self.cursor.fetchone.side_effect = [(True, 5), None]
        assert self.db.fetch_one("SELECT a, b FROM t;") == (1, 5)

    def test_begin_immediate_takes_advisory_lock(self):
        self.db.begin_immediate()
        statements = [call.args[0] for call in self.cursor.execute.call_args_list]
        assert statements == ["BEGIN;", f"SELECT pg_advisory_xact_lock({EXCLUSIVE_LOCK_KEY});"]
        assert self.db.in_transaction

    def _fail_advisory_lock(self):
        def execute(sql, *args):
            if "pg_advisory_xact_lock" in sql:
                raise _LockNotAvailable("could not obtain lock")
        self.cursor.execute.side_effect = execute

    def test_failed_advisory_lock_rolls_back(self):
        self._fail_advisory_lock()

        with pytest.raises(LockUnavailableError):
            self.db.begin_immediate()

        statements = [call.args[0] for call in self.cursor.execute.call_args_list]
        assert statements[-1] == "ROLLBACK;"
        assert not self.db.in_transaction

    def test_begin_immediate_giveup_rolls_back_on_lock_error(self):
        self._fail_advisory_lock()

        assert self.db.begin_immediate_giveup() == SQLStatus.ERROR
        assert not self.db.in_transaction

        self.cursor.execute.side_effect = None
        self.db.begin_immediate()
        assert self.db.in_transaction

    def test_last_insert_id(self):
        self.cursor.description = [("lastval",)]
        self.cursor.fetchone.side_effect = [(42,)]
        assert self.db.last_insert_id() == 42
        self.cursor.execute.assert_called_once_with("SELECT lastval();")

    def test_cancel(self):
        self.db.connect()
        self.db.cancel()
        self.connection.cancel.assert_called_once()

    def test_cancelled_query_is_not_logged_as_warning(self, caplog):
        self.cursor.execute.side_effect = _Cancelled("canceling statement due to user request")
        with caplog.at_level("DEBUG", logger="gvm_manager.db"):
            with pytest.raises(QueryCancelledError):
                self.db.execute("SELECT pg_sleep(10);")
        assert not [r for r in caplog.records if r.levelname == "WARNING"]

    def test_sqlstates_are_translated(self):
        assert isinstance(translate_error(_Cancelled("x"), "SELECT 1;"), QueryCancelledError)
        assert isinstance(translate_error(_LockNotAvailable("x"), "SELECT 1;"), LockUnavailableError)
        assert isinstance(translate_error(_UniqueViolation("x"), "INSERT"), UniqueViolationError)
        assert type(translate_error(psycopg2.Error("x"), "SELECT 1;")) is DatabaseError

    def test_execute_error_reports_lock_unavailable(self):
        self.cursor.execute.side_effect = _LockNotAvailable("could not obtain lock")
        assert self.db.execute_error("LOCK TABLE t NOWAIT;") == 2

    def test_create_functions_executes_definitions(self):
        self.db.create_functions({"f": "CREATE OR REPLACE FUNCTION f () RETURNS int AS $$ SELECT 1; $$ LANGUAGE SQL;"})
        self.cursor.execute.assert_called_once()
        assert "CREATE OR REPLACE FUNCTION f" in self.cursor.execute.call_args.args[0]

    def test_reset_sequence(self):
        self.db.reset_sequence("results")
        sql = self.cursor.execute.call_args.args[0]
        assert "pg_get_serial_sequence('results', 'id')" in sql

    def test_connect_failure(self):
        self.connect.side_effect = psycopg2.OperationalError("could not connect")
        with pytest.raises(DatabaseError):
            self.db.connect()


class TestFactory:

    def test_postgresql_backend_from_config(self):
        config = ManagerConfig(database=DatabaseConfig(type="postgresql", name="gvmd", host="db", user="gvm"))
        backend = get_database_backend(config)
        assert isinstance(backend, PostgreSQLBackend)
        assert backend.dsn == "dbname=gvmd host=db port=5432 user=gvm"
