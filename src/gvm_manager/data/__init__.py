"""
Data layer for gvm-manager.

Contains models and repositories for identities, permissions and
resources, plus the predefined seed data.
"""

from .models import (
    Agent,
    Config,
    Group,
    Permission,
    Report,
    Resource,
    Result,
    Role,
    Scanner,
    SubjectType,
    Task,
    User,
)
from .repos import (
    GroupRepository,
    PermissionRepository,
    Repository,
    ResourceRepository,
    RoleRepository,
    UserRepository,
)

__all__ = [
    "Resource",
    "User",
    "Group",
    "Role",
    "Permission",
    "SubjectType",
    "Agent",
    "Config",
    "Report",
    "Result",
    "Scanner",
    "Task",
    "Repository",
    "UserRepository",
    "GroupRepository",
    "RoleRepository",
    "PermissionRepository",
    "ResourceRepository",
]
