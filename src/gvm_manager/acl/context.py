"""
Caller context for access decisions.

The caller is an explicit value threaded through every ACL and query call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Credentials:
    """
    Identity of the caller.

    uuid == ""   internal/bootstrap caller, always allowed
    uuid is None anonymous caller, only meaningful when building predicates
    """
    uuid: Optional[str]
    username: Optional[str] = None

    @classmethod
    def internal(cls) -> "Credentials":
        return cls(uuid="", username="internal")

    @classmethod
    def anonymous(cls) -> "Credentials":
        return cls(uuid=None)

    @property
    def is_internal(self) -> bool:
        return self.uuid == ""

    @property
    def is_anonymous(self) -> bool:
        return self.uuid is None


@dataclass(frozen=True)
class GetParams:
    """Options of a get/list request that affect the owned clause."""
    trash: bool = False
    filter: Optional[str] = None
