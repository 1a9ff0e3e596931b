"""
Resource type registry.

Maps each manageable type onto its live table, its trash storage and the
columns the access rules need.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# Predefined roles
ROLE_UUID_ADMIN = "7a8cb5b4-b74d-11e2-8187-406186ea4fc5"
ROLE_UUID_GUEST = "cc9cac5e-39a3-11e4-abae-406186ea4fc5"
ROLE_UUID_INFO = "5f8fd16c-c550-11e3-b6ab-406186ea4fc5"
ROLE_UUID_MONITOR = "12cdb536-480b-11e4-8552-406186ea4fc5"
ROLE_UUID_USER = "8d453140-b74d-11e2-b0be-406186ea4fc5"
ROLE_UUID_SUPER_ADMIN = "9c5a6ec6-6fe2-11e4-8cb6-406186ea4fc5"
ROLE_UUID_OBSERVER = "87a7ebce-b74d-11e2-a81f-406186ea4fc5"

PERMISSION_EVERYTHING = "Everything"
PERMISSION_SUPER = "Super"


@dataclass(frozen=True)
class ResourceType:
    name: str
    table: Optional[str] = None
    trash_table: Optional[str] = None
    # Tasks keep trashed rows in the live table, marked hidden = 2
    trash_in_table: bool = False
    # Column holding the owning task, for types reached through task grants
    task_column: Optional[str] = None
    # Owner resolved through another table: (table, column on this row)
    owner_via: Optional[tuple[str, str]] = None
    # Feed data: global, read-only, always owned
    feed: bool = False
    # Whether an owner of NULL means "owned by everyone"
    global_owned: bool = True

    @property
    def has_trash(self) -> bool:
        return self.trash_table is not None or self.trash_in_table

    @property
    def get_permission(self) -> str:
        return f"get_{self.name}s"

    def table_for(self, trash: bool) -> Optional[str]:
        if trash and not self.trash_in_table:
            return self.trash_table
        return self.table


def _owned(name: str, trash: bool = True) -> ResourceType:
    return ResourceType(name, f"{name}s", f"{name}s_trash" if trash else None)


RESOURCE_TYPES: dict[str, ResourceType] = {
    rtype.name: rtype
    for rtype in (
        _owned("agent", trash=False),
        _owned("agent_group", trash=False),
        _owned("alert"),
        _owned("config"),
        _owned("credential"),
        _owned("filter"),
        _owned("group"),
        ResourceType("permission", "permissions", "permissions_trash", global_owned=False),
        _owned("role"),
        _owned("scanner"),
        _owned("schedule"),
        _owned("tag"),
        _owned("target"),
        _owned("user", trash=False),
        ResourceType("task", "tasks", trash_in_table=True),
        ResourceType("report", "reports", task_column="task"),
        ResourceType("result", "results", task_column="task", owner_via=("reports", "report")),
        ResourceType("nvt", "nvts", feed=True),
        ResourceType("cve", feed=True),
        ResourceType("cpe", feed=True),
        ResourceType("ovaldef", feed=True),
        ResourceType("cert_bund_adv", feed=True),
        ResourceType("dfn_cert_adv", feed=True),
    )
}


def get_resource_type(name: str) -> ResourceType:
    try:
        return RESOURCE_TYPES[name]
    except KeyError:
        raise ValueError(f"Unknown resource type: {name}") from None


def is_get_class(operation: Optional[str]) -> bool:
    """get-class operations are satisfied by any permission on the resource."""
    return operation is None or operation.lower().startswith("get")
