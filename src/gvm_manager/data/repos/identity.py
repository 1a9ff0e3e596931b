"""
Identity Repositories

Users, groups, roles and their memberships.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..models import Group, Role, User
from .base import Repository

logger = logging.getLogger(__name__)


class UserRepository(Repository[User]):
    """Repository for user accounts."""

    @property
    def table_name(self) -> str:
        return "users"

    @property
    def model_class(self) -> type[User]:
        return User

    def get_by_name(self, name: str) -> Optional[User]:
        row = self.db.fetch_one(f"{self._select()} WHERE users.name = ?;", (name,))
        return self._to_model(row) if row else None

    def create_user(
        self,
        name: str,
        password: Optional[str] = None,
        owner: Optional[int] = None,
        comment: str = "",
    ) -> User:
        hashed = User.hash_password(password) if password else None
        user = self.create(User(name=name, password=hashed, owner=owner, comment=comment))
        logger.info(f"Created user {name} ({user.uuid})")
        return user

    def add_to_group(self, user_id: int, group_id: int) -> None:
        self.db.execute('INSERT INTO group_users ("group", "user") VALUES (?, ?);', (group_id, user_id))

    def remove_from_group(self, user_id: int, group_id: int) -> None:
        self.db.execute('DELETE FROM group_users WHERE "group" = ? AND "user" = ?;', (group_id, user_id))

    def add_to_role(self, user_id: int, role_id: int) -> None:
        self.db.execute('INSERT INTO role_users (role, "user") VALUES (?, ?);', (role_id, user_id))

    def remove_from_role(self, user_id: int, role_id: int) -> None:
        self.db.execute('DELETE FROM role_users WHERE role = ? AND "user" = ?;', (role_id, user_id))

    def groups_of(self, user_id: int) -> list[int]:
        rows = self.db.fetch_all('SELECT "group" FROM group_users WHERE "user" = ? ORDER BY "group";', (user_id,))
        return [row[0] for row in rows]

    def roles_of(self, user_id: int) -> list[int]:
        rows = self.db.fetch_all('SELECT role FROM role_users WHERE "user" = ? ORDER BY role;', (user_id,))
        return [row[0] for row in rows]


class GroupRepository(Repository[Group]):

    @property
    def table_name(self) -> str:
        return "groups"

    @property
    def model_class(self) -> type[Group]:
        return Group

    def members(self, group_id: int) -> list[int]:
        rows = self.db.fetch_all('SELECT "user" FROM group_users WHERE "group" = ? ORDER BY "user";', (group_id,))
        return [row[0] for row in rows]


class RoleRepository(Repository[Role]):

    @property
    def table_name(self) -> str:
        return "roles"

    @property
    def model_class(self) -> type[Role]:
        return Role

    def members(self, role_id: int) -> list[int]:
        rows = self.db.fetch_all('SELECT "user" FROM role_users WHERE role = ? ORDER BY "user";', (role_id,))
        return [row[0] for row in rows]
