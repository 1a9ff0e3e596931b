"""
Shipped migration chain.

Version 2 is the oldest database that can be migrated. Each payload runs
inside the transaction opened by Migration.apply, so payloads never begin
or commit themselves.
"""

from __future__ import annotations

import logging

from ..db.backend import DatabaseBackend
from ..db.schema import add_column, create_table
from .migration import Migration, migration

logger = logging.getLogger(__name__)

MIN_OLD_VERSION = 2

MIGRATIONS: list[Migration] = [
    # Databases before version 2 kept users outside the database.
    Migration(2, "baseline"),
]


@migration(3, "alerts_active", MIGRATIONS)
def migrate_2_to_3(db: DatabaseBackend) -> None:
    """Alerts can be deactivated."""
    for table in ("alerts", "alerts_trash"):
        add_column(db, table, "active", 3)
        db.execute(f"UPDATE {table} SET active = 1;")


@migration(4, "lsc_credential_rename", MIGRATIONS)
def migrate_3_to_4(db: DatabaseBackend) -> None:
    """The lsc_credential resource type became credential."""
    for table in ("permissions", "permissions_trash"):
        db.execute(
            f"UPDATE {table} SET resource_type = 'credential'"
            " WHERE resource_type = 'lsc_credential';"
        )
        db.execute(f"UPDATE {table} SET name = replace(name, 'lsc_credential', 'credential');")


@migration(5, "usage_type", MIGRATIONS)
def migrate_4_to_5(db: DatabaseBackend) -> None:
    """Configs and tasks gain a usage type, existing ones are scans."""
    for table in ("configs", "configs_trash", "tasks"):
        add_column(db, table, "usage_type", 5)
        db.execute(f"UPDATE {table} SET usage_type = 'scan';")


@migration(6, "results_severity_real", MIGRATIONS)
def migrate_5_to_6(db: DatabaseBackend) -> None:
    """Result severities are stored as numbers."""
    db.execute("ALTER TABLE results RENAME TO results_5;")
    create_table(db, "results", 6)
    db.execute(
        "INSERT INTO results"
        " (id, uuid, task, report, host, port, nvt, type, severity, description, date)"
        " SELECT id, uuid, task, report, host, port, nvt, type,"
        f" CAST(NULLIF(severity, '') AS {db.type_names['real']}), description, date"
        " FROM results_5;"
    )
    db.execute("DROP TABLE results_5;")
    db.reset_sequence("results")
