"""
Test configuration loading
"""

from pathlib import Path

import pytest

from gvm_manager.config import (
    DatabaseConfig,
    ManagerConfig,
    load_config,
    load_config_from_file,
)
from gvm_manager.config.loader import expand_environment
from gvm_manager.db import SQLiteBackend, get_database_backend
from gvm_manager.db.postgres import PostgreSQLBackend
from gvm_manager.errors import ConfigurationError

EXAMPLE = """
database:
  type: sqlite
  path: "${GVMD_TEST_DB:-state/gvmd.db}"
  retries: 3

feeds:
  scap:
    supported_version: 22
    sync_command: greenbone-feed-sync --type scap --migrate
  cert:
    supported_version: 8
    sync_command: ["greenbone-feed-sync", "--type", "cert", "--migrate"]
    timeout: 120

logging:
  level: debug

agent_controller:
  timeout: 5
  verify: false
"""


class TestInterpolation:

    def test_default(self, monkeypatch):
        monkeypatch.delenv("GVMD_TEST_VALUE", raising=False)
        assert expand_environment("${GVMD_TEST_VALUE:-fallback}") == "fallback"

    def test_environment_wins(self, monkeypatch):
        monkeypatch.setenv("GVMD_TEST_VALUE", "set")
        assert expand_environment({"a": ["${GVMD_TEST_VALUE:-fallback}"]}) == {"a": ["set"]}

    def test_required_variable_names_its_key(self, monkeypatch):
        monkeypatch.delenv("GVMD_TEST_VALUE", raising=False)
        raw = {"feeds": {"scap": {"sync_command": ["sync", "${GVMD_TEST_VALUE}"]}}}
        with pytest.raises(ConfigurationError) as excinfo:
            expand_environment(raw)
        assert excinfo.value.details == {"key": "feeds.scap.sync_command[1]", "variable": "GVMD_TEST_VALUE"}

    def test_several_variables_in_one_value(self, monkeypatch):
        monkeypatch.setenv("GVMD_TEST_HOST", "db.example")
        monkeypatch.delenv("GVMD_TEST_PORT", raising=False)
        assert expand_environment("${GVMD_TEST_HOST}:${GVMD_TEST_PORT:-5432}") == "db.example:5432"

    def test_non_strings_untouched(self):
        assert expand_environment(5) == 5


class TestLoader:

    def test_load_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GVMD_TEST_DB", raising=False)
        path = tmp_path / "gvmd.yaml"
        path.write_text(EXAMPLE)

        config = load_config_from_file(path)

        assert config.database.type == "sqlite"
        assert config.database.retries == 3
        assert config.working_dir == tmp_path.absolute()
        assert config.database_path() == tmp_path.absolute() / "state" / "gvmd.db"
        assert config.get_feed("scap").supported_version == 22
        assert config.get_feed("scap").sync_command == ["greenbone-feed-sync", "--type", "scap", "--migrate"]
        assert config.get_feed("cert").timeout == 120
        assert config.logging.level == "DEBUG"
        assert config.agent_controller.timeout == 5.0
        assert config.agent_controller.verify is False

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config_from_file(tmp_path / "nope.yaml")

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "gvmd.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            load_config_from_file(path)

    def test_missing_variable(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GVMD_TEST_PASSWORD", raising=False)
        path = tmp_path / "gvmd.yaml"
        path.write_text("database:\n  password: \"${GVMD_TEST_PASSWORD}\"\n")
        with pytest.raises(ConfigurationError) as excinfo:
            load_config_from_file(path)
        assert excinfo.value.details["key"] == "database.password"
        assert excinfo.value.details["path"] == str(path)

    def test_search_working_dir(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GVMD_CONFIG", raising=False)
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "gvmd.yaml").write_text("logging:\n  level: warning\n")
        assert load_config(working_dir=tmp_path).logging.level == "WARNING"

    def test_config_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "elsewhere.yaml"
        path.write_text("logging:\n  level: error\n")
        monkeypatch.setenv("GVMD_CONFIG", str(path))
        (tmp_path / "gvmd.yaml").write_text("logging:\n  level: warning\n")
        assert load_config(working_dir=tmp_path).logging.level == "ERROR"

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GVMD_CONFIG", raising=False)
        monkeypatch.chdir(tmp_path)
        config = load_config(working_dir=tmp_path / "empty")
        assert config.database.type == "sqlite"
        assert config.working_dir == tmp_path / "empty"
        assert config.get_feed("scap").sync_command == []

    def test_round_trip(self):
        config = ManagerConfig.from_dict({
            "database": {"type": "postgresql", "host": "db", "user": "gvm", "sslmode": "require"},
            "feeds": {"scap": {"supported_version": 22}},
        })
        again = ManagerConfig.from_dict(config.to_dict())
        assert again.database.dsn == config.database.dsn
        assert again.database.metadata == {"sslmode": "require"}
        assert again.get_feed("scap").supported_version == 22


class TestBackendSelection:

    def test_sqlite(self, tmp_path):
        config = ManagerConfig(database=DatabaseConfig(path="gvmd.db"), working_dir=tmp_path)
        backend = get_database_backend(config)
        assert isinstance(backend, SQLiteBackend)
        assert backend.path == str(tmp_path / "gvmd.db")

    def test_postgresql(self):
        config = ManagerConfig(database=DatabaseConfig(type="postgres", name="tasks"))
        backend = get_database_backend(config)
        assert isinstance(backend, PostgreSQLBackend)
        assert backend.dsn == "dbname=tasks"

    def test_unknown(self):
        with pytest.raises(ConfigurationError):
            get_database_backend(ManagerConfig(database=DatabaseConfig(type="oracle")))

    def test_memory_path(self):
        config = ManagerConfig(database=DatabaseConfig(path=":memory:"), working_dir=Path("/srv"))
        assert config.database_path() == Path(":memory:")
