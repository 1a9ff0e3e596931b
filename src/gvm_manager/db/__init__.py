"""
Database layer for gvm-manager.

SQL execution shim (statements, iterators, transactions, quoting) over
SQLite and PostgreSQL, plus the declarative forward schema.
"""

from .backend import (
    DatabaseBackend,
    Iterator,
    SQLStatus,
    Statement,
    StepResult,
    insert_literal,
    quote,
)
from .factory import get_database_backend
from .schema import (
    DATABASE_VERSION,
    LOCATION_TABLE,
    LOCATION_TRASH,
    create_tables,
    get_db_version,
    set_db_version,
)
from .sqlite import SQLiteBackend

__all__ = [
    "DatabaseBackend",
    "SQLiteBackend",
    "Statement",
    "StepResult",
    "Iterator",
    "SQLStatus",
    "quote",
    "insert_literal",
    "get_database_backend",
    "DATABASE_VERSION",
    "LOCATION_TABLE",
    "LOCATION_TRASH",
    "create_tables",
    "get_db_version",
    "set_db_version",
]
