"""
Manager Database Schema

The single forward schema. Each column records the version that added it
(`since`) and, for retyped or dropped columns, the first version without
it (`until`). `create_tables(db, version)` therefore builds the canonical
schema of any supported version, which is what migrated databases are
compared against.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .backend import DatabaseBackend

logger = logging.getLogger(__name__)

# Version the running code expects
DATABASE_VERSION = 6

LOCATION_TABLE = 0
LOCATION_TRASH = 1


@dataclass(frozen=True)
class Column:
    name: str
    type: str = "text"
    default: Optional[str] = None
    since: int = 1
    until: Optional[int] = None
    unique: bool = False

    def exists_at(self, version: int) -> bool:
        if version < self.since:
            return False
        return self.until is None or version < self.until

    def definition(self, db: DatabaseBackend, for_alter: bool = False) -> str:
        parts = [f'"{self.name}"', db.type_names[self.type]]
        if self.unique and not for_alter:
            parts.append("UNIQUE")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)


@dataclass(frozen=True)
class Table:
    name: str
    columns: tuple[Column, ...]

    def columns_at(self, version: int) -> list[Column]:
        return [c for c in self.columns if c.exists_at(version)]

    def column(self, name: str, version: int) -> Column:
        for column in self.columns_at(version):
            if column.name == name:
                return column
        raise KeyError(f"{self.name}.{name} does not exist at version {version}")


def _resource(*extra: Column) -> tuple[Column, ...]:
    """Columns shared by every owned resource table."""
    return (
        Column("id", "id"),
        Column("uuid", unique=True),
        Column("owner", "integer"),
        Column("name"),
        Column("comment"),
        *extra,
        Column("creation_time", "integer"),
        Column("modification_time", "integer"),
    )


def _with_trash(name: str, columns: tuple[Column, ...]) -> list[Table]:
    return [Table(name, columns), Table(f"{name}_trash", columns)]


TABLES: list[Table] = [
    Table("meta", (
        Column("id", "id"),
        Column("name", unique=True),
        Column("value"),
    )),
    Table("migrations", (
        Column("id", "id"),
        Column("version", "integer"),
        Column("name"),
        Column("checksum"),
        Column("applied_at", "integer"),
    )),
    Table("users", _resource(
        Column("password"),
        Column("enabled", "integer", "1"),
    )),
    *_with_trash("groups", _resource()),
    Table("group_users", (
        Column("id", "id"),
        Column("group", "integer"),
        Column("user", "integer"),
    )),
    Table("group_users_trash", (
        Column("id", "id"),
        Column("group", "integer"),
        Column("user", "integer"),
    )),
    *_with_trash("roles", _resource()),
    Table("role_users", (
        Column("id", "id"),
        Column("role", "integer"),
        Column("user", "integer"),
    )),
    Table("role_users_trash", (
        Column("id", "id"),
        Column("role", "integer"),
        Column("user", "integer"),
    )),
    *_with_trash("permissions", _resource(
        Column("resource_type"),
        Column("resource", "integer"),
        Column("resource_uuid"),
        Column("resource_location", "integer", "0"),
        Column("subject_type"),
        Column("subject", "integer"),
        Column("subject_location", "integer", "0"),
    )),
    *_with_trash("targets", _resource(
        Column("hosts"),
        Column("exclude_hosts"),
    )),
    *_with_trash("credentials", _resource(
        Column("type"),
        Column("login"),
        Column("certificate"),
        Column("private_key"),
        Column("secret"),
    )),
    Table("scanners", _resource(
        Column("host"),
        Column("port", "integer"),
        Column("type", "integer"),
        Column("ca_pub"),
        Column("credential", "integer"),
    )),
    Table("scanners_trash", _resource(
        Column("host"),
        Column("port", "integer"),
        Column("type", "integer"),
        Column("ca_pub"),
        Column("credential", "integer"),
        Column("credential_location", "integer", "0"),
    )),
    Table("configs", _resource(
        Column("nvt_selector"),
        Column("family_count", "integer", "0"),
        Column("nvt_count", "integer", "0"),
        Column("families_growing", "integer", "0"),
        Column("nvts_growing", "integer", "0"),
        Column("predefined", "integer", "0"),
        Column("scanner", "integer"),
        Column("usage_type", default="'scan'", since=5),
    )),
    Table("configs_trash", _resource(
        Column("nvt_selector"),
        Column("family_count", "integer", "0"),
        Column("nvt_count", "integer", "0"),
        Column("families_growing", "integer", "0"),
        Column("nvts_growing", "integer", "0"),
        Column("predefined", "integer", "0"),
        Column("scanner", "integer"),
        Column("scanner_location", "integer", "0"),
        Column("usage_type", default="'scan'", since=5),
    )),
    *_with_trash("config_preferences", (
        Column("id", "id"),
        Column("config", "integer"),
        Column("type"),
        Column("name"),
        Column("value"),
        Column("default_value"),
        Column("pref_nvt"),
        Column("pref_id", "integer"),
        Column("pref_type"),
        Column("pref_name"),
    )),
    Table("nvt_selectors", (
        Column("id", "id"),
        Column("name"),
        Column("exclude", "integer", "0"),
        Column("type", "integer"),
        Column("family_or_nvt"),
        Column("family"),
    )),
    Table("nvts", (
        Column("id", "id"),
        Column("uuid", unique=True),
        Column("oid"),
        Column("name"),
        Column("family"),
        Column("creation_time", "integer"),
        Column("modification_time", "integer"),
    )),
    *_with_trash("alerts", _resource(
        Column("event", "integer"),
        Column("condition", "integer"),
        Column("method", "integer"),
        Column("filter", "integer"),
        Column("active", "integer", "1", since=3),
    )),
    *_with_trash("filters", _resource(
        Column("type"),
        Column("term"),
    )),
    *_with_trash("schedules", _resource(
        Column("icalendar"),
        Column("timezone"),
    )),
    *_with_trash("tags", _resource(
        Column("resource_type"),
        Column("active", "integer", "1"),
        Column("value"),
    )),
    Table("tasks", _resource(
        Column("hidden", "integer", "0"),
        Column("config", "integer"),
        Column("target", "integer"),
        Column("scanner", "integer"),
        Column("run_status", "integer", "0"),
        Column("alterable", "integer", "0"),
        Column("usage_type", default="'scan'", since=5),
    )),
    Table("reports", (
        Column("id", "id"),
        Column("uuid", unique=True),
        Column("owner", "integer"),
        Column("task", "integer"),
        Column("date", "integer"),
        Column("scan_run_status", "integer", "0"),
        Column("comment"),
        Column("creation_time", "integer"),
        Column("modification_time", "integer"),
    )),
    Table("results", (
        Column("id", "id"),
        Column("uuid", unique=True),
        Column("task", "integer"),
        Column("report", "integer"),
        Column("host"),
        Column("port"),
        Column("nvt"),
        Column("type"),
        Column("severity", "text", until=6),
        Column("severity", "real", since=6),
        Column("description"),
        Column("date", "integer"),
    )),
    Table("agents", _resource(
        Column("agent_id"),
        Column("hostname"),
        Column("scanner", "integer"),
        Column("authorized", "integer", "0"),
        Column("connection_status"),
        Column("last_update", "integer"),
        Column("config"),
    )),
    Table("agent_groups", _resource(
        Column("scanner", "integer"),
    )),
    Table("agent_group_agents", (
        Column("id", "id"),
        Column("group", "integer"),
        Column("agent", "integer"),
    )),
]

TABLES_BY_NAME: dict[str, Table] = {table.name: table for table in TABLES}


def get_table(name: str) -> Table:
    return TABLES_BY_NAME[name]


def create_table_sql(db: DatabaseBackend, table: Table, version: int, name: Optional[str] = None) -> str:
    columns = ", ".join(c.definition(db) for c in table.columns_at(version))
    return f'CREATE TABLE IF NOT EXISTS {name or table.name} ({columns});'


def create_table(db: DatabaseBackend, name: str, version: int = DATABASE_VERSION,
                 as_name: Optional[str] = None) -> None:
    """Create one table as it is defined at `version`, optionally under another name."""
    db.execute(create_table_sql(db, get_table(name), version, as_name))


def add_column(db: DatabaseBackend, table: str, column: str, version: int) -> None:
    """ALTER TABLE ADD COLUMN using the column's definition at `version`."""
    definition = get_table(table).column(column, version).definition(db, for_alter=True)
    db.execute(f"ALTER TABLE {table} ADD COLUMN {definition};")


def create_tables(db: DatabaseBackend, version: int = DATABASE_VERSION) -> None:
    """Create every table as defined at `version`."""
    logger.debug(f"Creating tables at version {version}")
    for table in TABLES:
        db.execute(create_table_sql(db, table, version))


def describe_schema(db: DatabaseBackend) -> set[tuple[str, str, str, Optional[str]]]:
    """(table, column, type, default) for every column in the database."""
    description = set()
    for table in db.table_names():
        for name, column_type, default in db.table_columns(table):
            description.add((table, name, column_type.upper(), default))
    return description


def get_db_version(db: DatabaseBackend) -> int:
    """
    Stored schema version.

    Returns -2 if the database has no tables yet, -1 if the version
    cannot be read.
    """
    if "meta" not in db.table_names():
        return -2
    value = db.scalar_string("SELECT value FROM meta WHERE name = 'database_version';")
    if value is None:
        return -2
    try:
        return int(value)
    except ValueError:
        logger.error(f"Invalid database version in meta: {value!r}")
        return -1


def set_db_version(db: DatabaseBackend, version: int) -> None:
    set_meta(db, "database_version", str(version))


def get_meta(db: DatabaseBackend, name: str) -> Optional[str]:
    return db.scalar_string("SELECT value FROM meta WHERE name = ?;", (name,))


def set_meta(db: DatabaseBackend, name: str, value: str) -> None:
    if db.execute("UPDATE meta SET value = ? WHERE name = ?;", (value, name)) == 0:
        db.execute("INSERT INTO meta (name, value) VALUES (?, ?);", (name, value))
