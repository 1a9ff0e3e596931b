"""
Predefined Seed Data

Predefined roles with their global permissions, predefined scan configs
and default scanners. Every `ensure_*` and `check_config_*` routine is
idempotent and safe to run on each startup.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..acl.types import (
    PERMISSION_EVERYTHING,
    PERMISSION_SUPER,
    ROLE_UUID_ADMIN,
    ROLE_UUID_GUEST,
    ROLE_UUID_INFO,
    ROLE_UUID_MONITOR,
    ROLE_UUID_OBSERVER,
    ROLE_UUID_SUPER_ADMIN,
    ROLE_UUID_USER,
)
from ..db.backend import DatabaseBackend
from .models import Config, Role, Scanner
from .models.identity import new_uuid, now
from .repos import ResourceRepository, RoleRepository

logger = logging.getLogger(__name__)

# NVT selector types
NVT_SELECTOR_TYPE_ALL = 0
NVT_SELECTOR_TYPE_FAMILY = 1
NVT_SELECTOR_TYPE_NVT = 2

OID_PING_HOST = "1.3.6.1.4.1.25623.1.0.100315"
OID_GLOBAL_SETTINGS = "1.3.6.1.4.1.25623.1.0.12288"

CONFIG_UUID_FULL_AND_FAST = "daba56c8-73ec-11df-a475-002264764cea"
CONFIG_UUID_EMPTY = "085569ce-73ed-11df-83c3-002264764cea"
CONFIG_UUID_DISCOVERY = "8715c877-47a0-438d-98a3-27c7a6ab2196"
CONFIG_UUID_HOST_DISCOVERY = "2d3f051c-55ba-11e3-bf43-406186ea4fc5"
CONFIG_UUID_SYSTEM_DISCOVERY = "bbca7412-a950-11e3-9109-406186ea4fc5"
CONFIG_UUID_BASE = "d21f6c81-2b88-4ac1-b7b4-a2a9f2ad4663"

SCANNER_UUID_DEFAULT = "08b69003-5fc2-4037-a479-93b440211c73"
SCANNER_UUID_CVE = "6acd0832-df90-11e4-b9d5-28d24461215b"

SCANNER_TYPE_OPENVAS = 2
SCANNER_TYPE_CVE = 3

_OBSERVER_OPERATIONS = (
    "authenticate", "get_aggregates", "get_alerts", "get_assets", "get_configs",
    "get_credentials", "get_feeds", "get_filters", "get_info", "get_notes",
    "get_nvts", "get_overrides", "get_port_lists", "get_preferences",
    "get_report_configs", "get_report_formats", "get_reports", "get_results",
    "get_scanners", "get_schedules", "get_settings", "get_tags", "get_targets",
    "get_tasks", "get_tickets", "get_tls_certificates", "get_version", "help",
    "modify_setting",
)

_USER_RESOURCES = (
    "alert", "asset", "config", "credential", "filter", "note", "override",
    "port_list", "report", "report_config", "report_format", "scanner",
    "schedule", "tag", "target", "task", "ticket", "tls_certificate",
)

_USER_OPERATIONS = _OBSERVER_OPERATIONS + tuple(
    f"{verb}_{resource}" for resource in _USER_RESOURCES for verb in ("create", "modify", "delete")
) + ("start_task", "stop_task", "resume_task", "move_task", "get_system_reports",
     "empty_trashcan", "restore", "test_alert", "verify_scanner")

# Predefined roles: uuid -> (name, comment, global permissions)
PREDEFINED_ROLES: dict[str, tuple[str, str, tuple[str, ...]]] = {
    ROLE_UUID_ADMIN: ("Admin", "Administrator.  Full privileges.", (PERMISSION_EVERYTHING,)),
    ROLE_UUID_GUEST: (
        "Guest", "Guest.",
        ("authenticate", "get_info", "get_nvts", "get_settings", "help"),
    ),
    ROLE_UUID_INFO: (
        "Info", "Information browser.",
        ("authenticate", "get_info", "get_nvts", "get_settings", "help", "modify_setting"),
    ),
    ROLE_UUID_MONITOR: (
        "Monitor", "Performance monitor.",
        ("authenticate", "get_settings", "get_system_reports", "help"),
    ),
    ROLE_UUID_OBSERVER: ("Observer", "Observer.", _OBSERVER_OPERATIONS),
    ROLE_UUID_SUPER_ADMIN: (
        "Super Admin", "Super administrator.  Full privileges with access to all users.",
        (PERMISSION_EVERYTHING,),
    ),
    ROLE_UUID_USER: ("User", "Standard user.", _USER_OPERATIONS),
}


def insert_role_permission(db: DatabaseBackend, name: str, role_uuid: str) -> None:
    """Grant a global permission to a predefined role."""
    db.execute(
        "INSERT INTO permissions"
        " (uuid, owner, name, comment, resource_type, resource, resource_uuid,"
        "  resource_location, subject_type, subject, subject_location,"
        "  creation_time, modification_time)"
        " VALUES (?, NULL, ?, '', '', 0, '', 0, 'role',"
        "  (SELECT id FROM roles WHERE uuid = ?), 0, ?, ?);",
        (new_uuid(), name, role_uuid, now(), now()),
    )


def role_has_permission(db: DatabaseBackend, name: str, role_uuid: str) -> bool:
    return db.exists(
        "SELECT 1 FROM permissions"
        " WHERE name = ? AND resource = 0 AND subject_type = 'role'"
        " AND subject = (SELECT id FROM roles WHERE uuid = ?);",
        (name, role_uuid),
    )


def ensure_predefined_roles(db: DatabaseBackend) -> int:
    """Create missing predefined roles and top up their permissions. Returns permissions added."""
    roles = RoleRepository(db)
    added = 0
    with db.atomic():
        for uuid, (name, comment, operations) in PREDEFINED_ROLES.items():
            if roles.find_id(uuid) is None:
                roles.create(Role(uuid=uuid, name=name, comment=comment))
                logger.info(f"Created predefined role {name}")
            for operation in operations:
                if not role_has_permission(db, operation, uuid):
                    insert_role_permission(db, operation, uuid)
                    added += 1
        # Super Admin additionally holds Super on everyone.
        if not role_has_permission(db, PERMISSION_SUPER, ROLE_UUID_SUPER_ADMIN):
            insert_role_permission(db, PERMISSION_SUPER, ROLE_UUID_SUPER_ADMIN)
            added += 1
    if added:
        logger.info(f"Added {added} predefined role permissions")
    return added


# ----------------------------------------------------------------------
# Scan configs
# ----------------------------------------------------------------------

def add_nvt_selector(db: DatabaseBackend, selector: str, oid: str, family: str,
                     exclude: bool = False) -> None:
    db.execute(
        "INSERT INTO nvt_selectors (name, exclude, type, family_or_nvt, family)"
        " VALUES (?, ?, ?, ?, ?);",
        (selector, 1 if exclude else 0, NVT_SELECTOR_TYPE_NVT, oid, family),
    )


def has_nvt_selector(db: DatabaseBackend, config_uuid: str, oid: str) -> bool:
    return db.exists(
        "SELECT 1 FROM nvt_selectors"
        " WHERE name = (SELECT nvt_selector FROM configs WHERE uuid = ?)"
        " AND type = ? AND family_or_nvt = ?;",
        (config_uuid, NVT_SELECTOR_TYPE_NVT, oid),
    )


def update_config_preference(db: DatabaseBackend, config_uuid: str, pref_type: str,
                             name: str, value: str, insert: bool = True) -> None:
    """Set a config preference, inserting it when missing and `insert` is set."""
    config = db.scalar_int64("SELECT id FROM configs WHERE uuid = ?;", (config_uuid,))
    if config is None:
        return
    exists = db.exists(
        "SELECT 1 FROM config_preferences WHERE config = ? AND type = ? AND name = ?;",
        (config, pref_type, name),
    )
    if exists:
        db.execute(
            "UPDATE config_preferences SET value = ? WHERE config = ? AND type = ? AND name = ?;",
            (value, config, pref_type, name),
        )
    elif insert:
        db.execute(
            "INSERT INTO config_preferences (config, type, name, value) VALUES (?, ?, ?, ?);",
            (config, pref_type, name, value),
        )


def update_config_counts(db: DatabaseBackend, config_uuid: str) -> None:
    db.execute(
        "UPDATE configs SET"
        " family_count = (SELECT count(DISTINCT family) FROM nvt_selectors"
        "                 WHERE name = configs.nvt_selector AND exclude = 0),"
        " nvt_count = (SELECT count(*) FROM nvt_selectors"
        "              WHERE name = configs.nvt_selector AND type = ? AND exclude = 0),"
        " modification_time = ?"
        " WHERE uuid = ?;",
        (NVT_SELECTOR_TYPE_NVT, now(), config_uuid),
    )


def _create_config(db: DatabaseBackend, uuid: str, name: str, comment: str,
                   growing: bool = False) -> Optional[Config]:
    configs = ResourceRepository(db, "config", Config)
    if configs.find_id(uuid) is not None:
        return None
    config = configs.create(Config(
        uuid=uuid,
        name=name,
        comment=comment,
        nvt_selector=uuid,
        families_growing=1 if growing else 0,
        nvts_growing=1 if growing else 0,
        predefined=1,
    ))
    logger.info(f"Created predefined config {name}")
    return config


def make_config_base(db: DatabaseBackend) -> None:
    if _create_config(db, CONFIG_UUID_BASE, "Base",
                      "Basic configuration template with a minimum set of NVTs"
                      " required for a scan.") is None:
        return
    add_nvt_selector(db, CONFIG_UUID_BASE, OID_PING_HOST, "Port scanners")
    add_nvt_selector(db, CONFIG_UUID_BASE, "1.3.6.1.4.1.25623.1.0.14259", "Port scanners")
    add_nvt_selector(db, CONFIG_UUID_BASE, "1.3.6.1.4.1.25623.1.0.103997", "Service detection")
    update_config_counts(db, CONFIG_UUID_BASE)
    update_config_preference(db, CONFIG_UUID_BASE, "SERVER_PREFS", "auto_enable_dependencies", "yes")


def make_config_discovery(db: DatabaseBackend) -> None:
    if _create_config(db, CONFIG_UUID_DISCOVERY, "Discovery",
                      "Network Discovery scan configuration.") is None:
        return
    add_nvt_selector(db, CONFIG_UUID_DISCOVERY, OID_PING_HOST, "Port scanners")
    add_nvt_selector(db, CONFIG_UUID_DISCOVERY, OID_GLOBAL_SETTINGS, "Settings")
    update_config_counts(db, CONFIG_UUID_DISCOVERY)


def make_config_host_discovery(db: DatabaseBackend) -> None:
    if _create_config(db, CONFIG_UUID_HOST_DISCOVERY, "Host Discovery",
                      "Network Host Discovery scan configuration.") is None:
        return
    add_nvt_selector(db, CONFIG_UUID_HOST_DISCOVERY, OID_PING_HOST, "Port scanners")
    update_config_counts(db, CONFIG_UUID_HOST_DISCOVERY)


def make_config_system_discovery(db: DatabaseBackend) -> None:
    if _create_config(db, CONFIG_UUID_SYSTEM_DISCOVERY, "System Discovery",
                      "Network System Discovery scan configuration.") is None:
        return
    add_nvt_selector(db, CONFIG_UUID_SYSTEM_DISCOVERY, OID_PING_HOST, "Port scanners")
    update_config_counts(db, CONFIG_UUID_SYSTEM_DISCOVERY)


def make_config_empty(db: DatabaseBackend) -> None:
    _create_config(db, CONFIG_UUID_EMPTY, "empty",
                   "Empty and static configuration template.")


def make_config_full_and_fast(db: DatabaseBackend) -> None:
    if _create_config(db, CONFIG_UUID_FULL_AND_FAST, "Full and fast",
                      "Most NVT's; optimized by using previously collected information.",
                      growing=True) is None:
        return
    db.execute(
        "INSERT INTO nvt_selectors (name, exclude, type, family_or_nvt, family)"
        " VALUES (?, 0, ?, NULL, NULL);",
        (CONFIG_UUID_FULL_AND_FAST, NVT_SELECTOR_TYPE_ALL),
    )


def check_config_discovery(db: DatabaseBackend, uuid: str = CONFIG_UUID_DISCOVERY) -> int:
    """Bring the Discovery config's preferences and selectors up to date."""
    db.execute(
        "UPDATE config_preferences SET value = 'no'"
        " WHERE config = (SELECT id FROM configs WHERE uuid = ?)"
        " AND type = 'PLUGINS_PREFS'"
        " AND name = ?"
        " AND value = 'yes';",
        (uuid, f"{OID_PING_HOST}:6:checkbox:Report about unrechable Hosts"),
    )
    update_config_preference(
        db, uuid, "PLUGINS_PREFS",
        f"{OID_PING_HOST}:5:checkbox:Mark unrechable Hosts as dead (not scanning)",
        "yes",
    )
    db.execute(
        "DELETE FROM nvt_selectors"
        " WHERE family_or_nvt = '1.3.6.1.4.1.25623.1.0.90011'"
        " AND type = ?"
        " AND name = (SELECT nvt_selector FROM configs WHERE uuid = ?);",
        (NVT_SELECTOR_TYPE_NVT, uuid),
    )
    return 0


def check_config_host_discovery(db: DatabaseBackend, uuid: str = CONFIG_UUID_HOST_DISCOVERY) -> int:
    """Add the global settings NVT and strictly unauthenticated preference."""
    if not has_nvt_selector(db, uuid, OID_GLOBAL_SETTINGS):
        selector = db.scalar_string("SELECT nvt_selector FROM configs WHERE uuid = ?;", (uuid,))
        if selector is None:
            return 0
        add_nvt_selector(db, selector, OID_GLOBAL_SETTINGS, "Settings")
        update_config_counts(db, uuid)
    update_config_preference(
        db, uuid, "PLUGINS_PREFS",
        f"{OID_GLOBAL_SETTINGS}:1:checkbox:Strictly unauthenticated",
        "yes",
    )
    return 0


def check_config_system_discovery(db: DatabaseBackend, uuid: str = CONFIG_UUID_SYSTEM_DISCOVERY) -> int:
    """Add the general and product detection NVTs."""
    selector = db.scalar_string("SELECT nvt_selector FROM configs WHERE uuid = ?;", (uuid,))
    if selector is None:
        return 0
    changed = False
    for oid, family in (
        ("1.3.6.1.4.1.25623.1.0.51662", "General"),
        ("1.3.6.1.4.1.25623.1.0.105937", "Product detection"),
    ):
        if not has_nvt_selector(db, uuid, oid):
            add_nvt_selector(db, selector, oid, family)
            changed = True
    if changed:
        update_config_counts(db, uuid)
    return 0


def ensure_predefined_configs(db: DatabaseBackend) -> None:
    with db.atomic():
        make_config_empty(db)
        make_config_base(db)
        make_config_discovery(db)
        make_config_host_discovery(db)
        make_config_system_discovery(db)
        make_config_full_and_fast(db)
        check_config_discovery(db)
        check_config_host_discovery(db)
        check_config_system_discovery(db)


def ensure_default_scanners(db: DatabaseBackend) -> None:
    scanners = ResourceRepository(db, "scanner", Scanner)
    with db.atomic():
        if scanners.find_id(SCANNER_UUID_DEFAULT) is None:
            scanners.create(Scanner(
                uuid=SCANNER_UUID_DEFAULT, name="OpenVAS Default",
                host="/run/ospd/ospd-openvas.sock", port=0, type=SCANNER_TYPE_OPENVAS,
            ))
            logger.info("Created default OpenVAS scanner")
        if scanners.find_id(SCANNER_UUID_CVE) is None:
            scanners.create(Scanner(
                uuid=SCANNER_UUID_CVE, name="CVE", type=SCANNER_TYPE_CVE,
            ))
            logger.info("Created CVE scanner")


def seed_database(db: DatabaseBackend) -> None:
    """Create all predefined data that is missing."""
    ensure_predefined_roles(db)
    ensure_predefined_configs(db)
    ensure_default_scanners(db)
