"""
Identity and Permission Models

Users, groups, roles and the permission grants between subjects and
resources.
"""

from __future__ import annotations

import hashlib
import secrets
import time
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def now() -> int:
    return int(time.time())


def new_uuid() -> str:
    return str(uuid4())


class SubjectType(str, Enum):
    """Kinds of permission subject."""
    USER = "user"
    GROUP = "group"
    ROLE = "role"


class Resource(BaseModel):
    """Columns shared by every owned resource table."""
    id: Optional[int] = None
    uuid: str = Field(default_factory=new_uuid)
    owner: Optional[int] = None  # NULL means global
    name: str = ""
    comment: str = ""
    creation_time: int = Field(default_factory=now)
    modification_time: int = Field(default_factory=now)

    @property
    def is_global(self) -> bool:
        return self.owner is None


class User(Resource):
    """A user account."""
    password: Optional[str] = None
    enabled: bool = True

    @staticmethod
    def hash_password(password: str, salt: str = None) -> str:
        """Hash a password with salt, returned as salt$hash."""
        if salt is None:
            salt = secrets.token_hex(16)
        digest = hashlib.sha256(f"{password}{salt}".encode()).hexdigest()
        return f"{salt}${digest}"

    def verify_password(self, password: str) -> bool:
        if not self.password or "$" not in self.password:
            return False
        salt, _ = self.password.split("$", 1)
        return secrets.compare_digest(self.hash_password(password, salt), self.password)


class Group(Resource):
    pass


class Role(Resource):
    pass


class Permission(Resource):
    """
    A grant of `name` on a resource to a subject.

    resource == 0 is a global grant, e.g. Everything.
    """
    resource_type: Optional[str] = None
    resource: int = 0
    resource_uuid: Optional[str] = None
    resource_location: int = 0
    subject_type: SubjectType = SubjectType.USER
    subject: int = 0
    subject_location: int = 0

    @property
    def is_global(self) -> bool:
        return self.resource == 0
