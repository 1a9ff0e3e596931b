"""
Access Control Layer

Caller credentials, the resource type registry, the access rule tree and
the engine that evaluates it both per row and as an owned clause.
"""

from .context import Credentials, GetParams
from .engine import AccessControl, sql_functions
from .rules import access_rule, ownership_rule
from .types import (
    PERMISSION_EVERYTHING,
    PERMISSION_SUPER,
    RESOURCE_TYPES,
    ROLE_UUID_ADMIN,
    ROLE_UUID_GUEST,
    ROLE_UUID_INFO,
    ROLE_UUID_MONITOR,
    ROLE_UUID_OBSERVER,
    ROLE_UUID_SUPER_ADMIN,
    ROLE_UUID_USER,
    ResourceType,
    get_resource_type,
)

__all__ = [
    "AccessControl",
    "Credentials",
    "GetParams",
    "ResourceType",
    "RESOURCE_TYPES",
    "get_resource_type",
    "access_rule",
    "ownership_rule",
    "sql_functions",
    "PERMISSION_EVERYTHING",
    "PERMISSION_SUPER",
    "ROLE_UUID_ADMIN",
    "ROLE_UUID_GUEST",
    "ROLE_UUID_INFO",
    "ROLE_UUID_MONITOR",
    "ROLE_UUID_OBSERVER",
    "ROLE_UUID_SUPER_ADMIN",
    "ROLE_UUID_USER",
]
