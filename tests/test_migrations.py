"""
Test the Migration Runner

Chain equivalence against a fresh schema, abort safety, the result codes
of every stage, and the data conversions of the shipped migrations.
"""

from unittest.mock import Mock, patch

import pytest

from gvm_manager.config import DatabaseConfig, ManagerConfig
from gvm_manager.db import SQLiteBackend
from gvm_manager.db.schema import (
    add_column,
    create_tables,
    describe_schema,
    get_db_version,
    set_db_version,
    set_meta,
)
from gvm_manager.errors import DatabaseError, MigrationError, MigrationPreconditionError
from gvm_manager.migrate import (
    MIGRATIONS,
    FeedStatus,
    MigrateResult,
    Migration,
    MigrationRunner,
    create_database,
    migrate,
    migration,
)

SHIPPED = {m.version: m for m in MIGRATIONS}


def _at_version(db, version):
    create_tables(db, version)
    set_db_version(db, version)
    return db


def _columns(db, table):
    return [column[0] for column in db.table_columns(table)]


def _feed(name, status):
    feed = Mock()
    feed.name = name
    feed.migrate.return_value = status
    return feed


class TestChain:
    """Migrating from the oldest supported version"""

    def test_migrated_schema_matches_fresh_schema(self, db, empty_db):
        _at_version(empty_db, 2)

        assert MigrationRunner(empty_db).migrate() == MigrateResult.SUCCESS
        assert get_db_version(empty_db) == 6
        assert describe_schema(empty_db) == describe_schema(db)

    def test_each_step_is_logged(self, empty_db):
        _at_version(empty_db, 2)
        MigrationRunner(empty_db).migrate()

        rows = empty_db.fetch_all("SELECT version, name, checksum FROM migrations ORDER BY version;")
        assert [row[0] for row in rows] == [3, 4, 5, 6]
        assert [row[1] for row in rows] == [SHIPPED[v].name for v in (3, 4, 5, 6)]
        assert all(row[2] == SHIPPED[row[0]].checksum for row in rows)

    def test_partial_chain(self, empty_db):
        _at_version(empty_db, 4)
        assert MigrationRunner(empty_db).migrate() == MigrateResult.SUCCESS
        assert get_db_version(empty_db) == 6

    def test_shipped_chain_is_contiguous(self):
        assert sorted(SHIPPED) == [2, 3, 4, 5, 6]
        assert SHIPPED[2].function is None
        assert all(SHIPPED[v].function is not None for v in (3, 4, 5, 6))


class TestResults:
    """Result codes of the schema stage"""

    def test_current_database(self, db):
        assert MigrationRunner(db).migrate() == MigrateResult.ALREADY_CURRENT

    def test_uninitialised_database(self, empty_db):
        assert MigrationRunner(empty_db).migrate() == MigrateResult.ALREADY_CURRENT
        assert empty_db.table_names() == []

    def test_too_old(self, empty_db):
        create_tables(empty_db, 2)
        set_db_version(empty_db, 1)
        assert MigrationRunner(empty_db).migrate() == MigrateResult.TOO_HARD
        assert get_db_version(empty_db) == 1

    def test_transition_without_migrator(self, empty_db):
        _at_version(empty_db, 3)
        chain = [SHIPPED[3], Migration(4, "manual"), SHIPPED[5], SHIPPED[6]]
        assert MigrationRunner(empty_db, chain).migrate() == MigrateResult.TOO_HARD
        assert get_db_version(empty_db) == 3

    def test_missing_link(self, empty_db):
        _at_version(empty_db, 3)
        chain = [SHIPPED[4], SHIPPED[6]]
        assert MigrationRunner(empty_db, chain).migrate() == MigrateResult.ERROR
        assert get_db_version(empty_db) == 3

    def test_newer_than_supported(self, db):
        set_db_version(db, 7)
        assert MigrationRunner(db).migrate() == MigrateResult.ERROR

    def test_invalid_version(self, db):
        set_meta(db, "database_version", "six")
        assert get_db_version(db) == -1
        assert MigrationRunner(db).migrate() == MigrateResult.ERROR

    def test_is_available(self, db):
        runner = MigrationRunner(db)
        assert runner.is_available(2, 6) == 1
        assert runner.is_available(5, 6) == 1
        assert runner.is_available(1, 6) == 0
        assert runner.is_available(2, 7) == -1


class TestAbort:
    """A failing transition leaves the last committed version"""

    def test_failure_rolls_back_ddl(self, empty_db):
        _at_version(empty_db, 2)
        calls = []

        def broken(db):
            calls.append(db)
            add_column(db, "configs", "usage_type", 5)
            raise RuntimeError("disk on fire")

        chain = [SHIPPED[3], Migration(4, "broken", broken), SHIPPED[5]]
        result = MigrationRunner(empty_db, chain, target_version=5).migrate()

        assert result == MigrateResult.ERROR
        assert len(calls) == 1
        assert get_db_version(empty_db) == 3
        assert "usage_type" not in _columns(empty_db, "configs")
        assert "active" in _columns(empty_db, "alerts")
        assert empty_db.fetch_all("SELECT version FROM migrations;") == [(3,)]
        assert not empty_db.in_transaction

    def test_precondition(self, empty_db):
        _at_version(empty_db, 2)

        with pytest.raises(MigrationPreconditionError):
            SHIPPED[4].apply(empty_db)

        assert get_db_version(empty_db) == 2
        assert not empty_db.in_transaction

    def test_apply_without_function(self, empty_db):
        _at_version(empty_db, 1)
        with pytest.raises(MigrationError):
            SHIPPED[2].apply(empty_db)

    def test_checksum_tampering(self, empty_db):
        _at_version(empty_db, 2)
        assert MigrationRunner(empty_db).migrate() == MigrateResult.SUCCESS

        empty_db.execute("UPDATE migrations SET checksum = 'edited' WHERE version = 4;")
        runner = MigrationRunner(empty_db)
        assert runner.verify_checksums() == [4]
        assert runner.migrate() == MigrateResult.ERROR

    def test_tampered_log_stops_before_applying(self, empty_db):
        _at_version(empty_db, 2)
        assert MigrationRunner(empty_db, target_version=4).migrate() == MigrateResult.SUCCESS
        empty_db.execute("UPDATE migrations SET checksum = 'edited' WHERE version = 3;")

        assert MigrationRunner(empty_db).migrate() == MigrateResult.ERROR

        assert get_db_version(empty_db) == 4
        assert empty_db.fetch_all("SELECT version FROM migrations ORDER BY version;") == [(3,), (4,)]
        assert "usage_type" not in _columns(empty_db, "configs")

    def test_checksum_follows_identity_not_source(self):
        def original(db):
            db.execute("SELECT 1;")

        def reformatted(db):
            """Same transition, edited docstring."""
            db.execute(
                "SELECT 1;"
            )

        assert Migration(7, "example", original).checksum == Migration(7, "example", reformatted).checksum
        assert Migration(7, "example", original).checksum != Migration(7, "renamed", original).checksum
        assert Migration(7, "example", original).checksum != Migration(8, "example", original).checksum

    def test_failed_commit_rolls_back(self, empty_db):
        _at_version(empty_db, 2)

        with patch.object(empty_db, "commit", side_effect=DatabaseError("disk I/O error")):
            with pytest.raises(MigrationError):
                SHIPPED[3].apply(empty_db)

        assert not empty_db.in_transaction
        assert get_db_version(empty_db) == 2
        assert "active" not in _columns(empty_db, "alerts")
        assert empty_db.fetch_all("SELECT version FROM migrations;") == []


class TestDecorator:

    def test_registers_migration(self):
        registry = []

        @migration(7, "example", registry)
        def migrate_6_to_7(db):
            db.execute("SELECT 1;")

        assert len(registry) == 1
        assert registry[0].version == 7
        assert registry[0].from_version == 6
        assert registry[0].function is migrate_6_to_7
        assert len(registry[0].checksum) == 64


class TestConversions:
    """Data carried through the shipped migrations"""

    def setup_method(self):
        self.now = 1700000000

    def _populate(self, db):
        db.execute(
            "INSERT INTO alerts (uuid, name, creation_time, modification_time)"
            " VALUES ('a1', 'mail', ?, ?);", (self.now, self.now)
        )
        db.execute(
            "INSERT INTO permissions (uuid, name, resource_type, resource, subject_type, subject)"
            " VALUES ('p1', 'get_lsc_credentials', 'lsc_credential', 1, 'user', 1);"
        )
        db.execute("INSERT INTO configs (uuid, name) VALUES ('c1', 'Full');")
        db.execute("INSERT INTO tasks (uuid, name) VALUES ('t1', 'Weekly');")
        for uuid, severity in (("r1", "7.5"), ("r2", ""), ("r3", "-1.0")):
            db.execute("INSERT INTO results (uuid, severity) VALUES (?, ?);", (uuid, severity))

    def test_conversions(self, empty_db):
        _at_version(empty_db, 2)
        self._populate(empty_db)

        assert MigrationRunner(empty_db).migrate() == MigrateResult.SUCCESS

        assert empty_db.scalar_int("SELECT active FROM alerts WHERE uuid = 'a1';") == 1
        assert empty_db.fetch_one("SELECT name, resource_type FROM permissions WHERE uuid = 'p1';") == \
            ("get_credentials", "credential")
        assert empty_db.scalar_string("SELECT usage_type FROM configs WHERE uuid = 'c1';") == "scan"
        assert empty_db.scalar_string("SELECT usage_type FROM tasks WHERE uuid = 't1';") == "scan"
        assert empty_db.scalar_double("SELECT severity FROM results WHERE uuid = 'r1';") == 7.5
        assert empty_db.scalar_double("SELECT severity FROM results WHERE uuid = 'r3';") == -1.0
        assert empty_db.fetch_one("SELECT severity FROM results WHERE uuid = 'r2';") == (None,)

    def test_result_ids_continue_after_copy(self, empty_db):
        _at_version(empty_db, 2)
        self._populate(empty_db)
        MigrationRunner(empty_db).migrate()

        empty_db.execute("INSERT INTO results (uuid, severity) VALUES ('r4', 1.0);")
        assert empty_db.scalar_int("SELECT id FROM results WHERE uuid = 'r4';") == 4


class TestFeedStage:
    """Feed migration after the schema"""

    def test_scap_cannot_migrate(self, db):
        feeds = [_feed("scap", FeedStatus.TOO_NEW), _feed("cert", FeedStatus.CURRENT)]
        assert MigrationRunner(db, feeds=feeds).migrate() == MigrateResult.SCAP_CANNOT_MIGRATE

    def test_cert_sync_running(self, db):
        feeds = [_feed("scap", FeedStatus.CURRENT), _feed("cert", FeedStatus.RUNNING)]
        assert MigrationRunner(db, feeds=feeds).migrate() == MigrateResult.CERT_CANNOT_MIGRATE

    def test_scap_error_stops_before_cert(self, db):
        cert = _feed("cert", FeedStatus.CURRENT)
        feeds = [_feed("scap", FeedStatus.ERROR), cert]
        assert MigrationRunner(db, feeds=feeds).migrate() == MigrateResult.SCAP_ERROR
        cert.migrate.assert_not_called()

    def test_cert_error(self, db):
        feeds = [_feed("scap", FeedStatus.CURRENT), _feed("cert", FeedStatus.ERROR)]
        assert MigrationRunner(db, feeds=feeds).migrate() == MigrateResult.CERT_ERROR

    def test_migrated_feed_is_success(self, db):
        feeds = [_feed("scap", FeedStatus.MIGRATED), _feed("cert", FeedStatus.CURRENT)]
        assert MigrationRunner(db, feeds=feeds).migrate() == MigrateResult.SUCCESS

    def test_feeds_skipped_when_schema_fails(self, db):
        set_db_version(db, 7)
        scap = _feed("scap", FeedStatus.CURRENT)
        assert MigrationRunner(db, feeds=[scap]).migrate() == MigrateResult.ERROR
        scap.migrate.assert_not_called()


class TestMigrateFromConfig:
    """migrate() opens the configured database"""

    def _config(self, tmp_path):
        return ManagerConfig(
            database=DatabaseConfig(path=str(tmp_path / "data" / "gvmd.db")),
            working_dir=tmp_path,
        )

    def test_fresh_file(self, tmp_path):
        assert migrate(self._config(tmp_path)) == MigrateResult.ALREADY_CURRENT

    def test_old_database(self, tmp_path):
        config = self._config(tmp_path)
        with SQLiteBackend(config.database_path()) as db:
            _at_version(db, 2)

        assert migrate(config) == MigrateResult.SUCCESS

        with SQLiteBackend(config.database_path()) as db:
            assert get_db_version(db) == 6

    def test_created_database_is_current(self, tmp_path):
        config = self._config(tmp_path)
        with SQLiteBackend(config.database_path()) as db:
            create_database(db)

        assert migrate(config) == MigrateResult.ALREADY_CURRENT
