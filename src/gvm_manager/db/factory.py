"""Backend selection from configuration."""

import logging

from ..config import ManagerConfig
from ..errors import ConfigurationError
from .backend import DatabaseBackend

logger = logging.getLogger(__name__)


def get_database_backend(config: ManagerConfig) -> DatabaseBackend:
    """Create (but do not connect) the backend named by the configuration."""
    db = config.database
    options = dict(retries=db.retries, busy_sleep=db.busy_sleep, busy_sleep_max=db.busy_sleep_max)

    if db.is_postgresql:
        from .postgres import PostgreSQLBackend

        logger.info(f"Using PostgreSQL database {db.name}")
        return PostgreSQLBackend(db.dsn, **options)

    if db.type == "sqlite":
        from .sqlite import SQLiteBackend

        path = config.database_path()
        logger.info(f"Using SQLite database {path}")
        return SQLiteBackend(path, **options)

    raise ConfigurationError(f"Unknown database type: {db.type}", {"type": db.type})
