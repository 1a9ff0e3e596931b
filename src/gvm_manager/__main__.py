"""
gvm-manager - Entry Point

Database maintenance from the command line: create the schema, migrate an
existing database and its feeds, or report the stored version.
"""

import argparse
import logging
import sys

from .config import ManagerConfig, load_config
from .data.seed import seed_database
from .db import DATABASE_VERSION, get_database_backend, get_db_version
from .errors import ManagerError
from .migrate import MigrateResult, create_database, migrate

logger = logging.getLogger(__name__)


def setup_logging(config: ManagerConfig, debug: bool = False) -> None:
    level = logging.DEBUG if debug else getattr(logging, config.logging.level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=config.logging.format,
        filename=config.logging.file,
    )


def check_version(config: ManagerConfig) -> int:
    with get_database_backend(config) as db:
        version = get_db_version(db)
    if version == -2:
        print("Database is not initialised")
        return 1
    if version == -1:
        print("Database version could not be read")
        return 1
    print(f"Database version {version}, supported version {DATABASE_VERSION}")
    return 0 if version == DATABASE_VERSION else 1


def create_schema(config: ManagerConfig) -> int:
    with get_database_backend(config) as db:
        version = get_db_version(db)
        if version != -2:
            logger.error(f"Database already initialised at version {version}")
            return 1
        create_database(db)
        seed_database(db)
    return 0


def run_migrate(config: ManagerConfig) -> int:
    result = migrate(config)
    if result is MigrateResult.ALREADY_CURRENT:
        print("Database is already current")
    elif result is MigrateResult.SUCCESS:
        print("Database migrated")
    elif result is MigrateResult.TOO_HARD:
        print("Migrating the database from its version is not supported")
    else:
        print(f"Migration failed: {result.name} ({int(result)})")
    return 0 if result in (MigrateResult.SUCCESS, MigrateResult.ALREADY_CURRENT) else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="gvm-manager database maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create and seed a new database
  python -m gvm_manager --create-schema

  # Migrate the database and the SCAP/CERT feeds
  python -m gvm_manager --migrate --config /etc/gvm/gvmd.yaml

  # Show the stored database version
  python -m gvm_manager --check-version
"""
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to gvmd.yaml (default: search working directory)'
    )

    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument(
        '--migrate',
        action='store_true',
        help='Migrate the database and feeds to the supported versions'
    )
    action.add_argument(
        '--create-schema',
        action='store_true',
        help='Create and seed the schema on an empty database'
    )
    action.add_argument(
        '--check-version',
        action='store_true',
        help='Print the stored database version'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (ManagerError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config, args.debug)

    try:
        if args.check_version:
            return check_version(config)
        if args.create_schema:
            return create_schema(config)
        return run_migrate(config)
    except ManagerError as e:
        logger.error(f"{e}")
        return 1


def run():
    """Entry point for console script"""
    sys.exit(main())


if __name__ == '__main__':
    run()
