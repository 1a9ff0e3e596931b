"""
Data models for gvm-manager.
"""

from .identity import Group, Permission, Resource, Role, SubjectType, User
from .resources import (
    Agent,
    AgentGroup,
    Alert,
    Config,
    Credential,
    Filter,
    Nvt,
    Report,
    Result,
    Scanner,
    Schedule,
    Tag,
    Target,
    Task,
)

__all__ = [
    "Resource",
    "User",
    "Group",
    "Role",
    "Permission",
    "SubjectType",
    "Agent",
    "AgentGroup",
    "Alert",
    "Config",
    "Credential",
    "Filter",
    "Nvt",
    "Report",
    "Result",
    "Scanner",
    "Schedule",
    "Tag",
    "Target",
    "Task",
]
