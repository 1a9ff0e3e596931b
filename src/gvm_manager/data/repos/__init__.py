"""
Repositories for gvm-manager.

Synchronous data access over the SQL execution shim.
"""

from .base import Repository
from .identity import GroupRepository, RoleRepository, UserRepository
from .permissions import PermissionRepository
from .resources import ResourceRepository

__all__ = [
    "Repository",
    "UserRepository",
    "GroupRepository",
    "RoleRepository",
    "PermissionRepository",
    "ResourceRepository",
]
