"""
Resource Repository

Generic owned resources and their trashcan lifecycle: create, modify,
move to trash, restore, delete ultimately and empty trash. Grants and
memberships follow their resource between the live and trash tables.
"""

from __future__ import annotations

import logging
from typing import Optional, TypeVar

from pydantic import BaseModel

from ...acl.types import ResourceType, get_resource_type
from ...db.backend import DatabaseBackend
from ...db.schema import DATABASE_VERSION, LOCATION_TABLE, LOCATION_TRASH, get_table
from .base import Repository
from .permissions import PermissionRepository

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# Membership tables of subject types: (table, column naming the subject)
MEMBERSHIPS = {
    "group": ("group_users", "group"),
    "role": ("role_users", "role"),
}

# Rows removed along with their parent: type -> (table, column naming the parent)
DEPENDENTS = {
    "report": ("results", "report"),
}


class ResourceRepository(Repository[T]):
    """Repository for one resource type."""

    def __init__(self, db: DatabaseBackend, resource_type: str, model_class: type[T]):
        super().__init__(db)
        self.rtype: ResourceType = get_resource_type(resource_type)
        if self.rtype.table is None:
            raise ValueError(f"{resource_type} has no resource table")
        self._model_class = model_class
        self.permissions = PermissionRepository(db)

    @property
    def table_name(self) -> str:
        return self.rtype.table

    @property
    def model_class(self) -> type[T]:
        return self._model_class

    @property
    def trash_table(self) -> Optional[str]:
        return self.rtype.trash_table

    def get_by_uuid(self, uuid: str, trash: bool = False) -> Optional[T]:
        if self.rtype.trash_in_table:
            entity = super().get_by_uuid(uuid)
            if entity is None or (getattr(entity, "hidden", 0) == 2) != trash:
                return None
            return entity
        table = self.rtype.table_for(trash)
        if table is None:
            return None
        return super().get_by_uuid(uuid, table)

    def _trash_columns(self) -> list[str]:
        trash_columns = {c.name for c in get_table(self.trash_table).columns_at(DATABASE_VERSION)}
        return [c for c in self.columns if c in trash_columns]

    def _move_members(self, old_id: int, new_id: int, to_trash: bool) -> None:
        membership = MEMBERSHIPS.get(self.rtype.name)
        if membership is None:
            return
        table, column = membership
        source, target = (table, f"{table}_trash") if to_trash else (f"{table}_trash", table)
        self.db.execute(
            f'INSERT INTO {target} ("{column}", "user")'
            f' SELECT ?, "user" FROM {source} WHERE "{column}" = ?;',
            (new_id, old_id),
        )
        self.db.execute(f'DELETE FROM {source} WHERE "{column}" = ?;', (old_id,))
        self.permissions.relocate_subject(self.rtype.name, old_id, new_id, to_trash)

    def _move(self, uuid: str, to_trash: bool) -> Optional[int]:
        source, target = (self.table_name, self.trash_table)
        if not to_trash:
            source, target = target, source
        old_id = self.find_id(uuid, source)
        if old_id is None:
            return None
        names = ", ".join(f'"{c}"' for c in self._trash_columns())
        self.db.execute(
            f"INSERT INTO {target} ({names}) SELECT {names} FROM {source} WHERE id = ?;",
            (old_id,),
        )
        new_id = self.db.last_insert_id()
        self.permissions.relocate_resource(self.rtype.name, old_id, new_id, to_trash)
        self._move_members(old_id, new_id, to_trash)
        self.db.execute(f"DELETE FROM {source} WHERE id = ?;", (old_id,))
        return new_id

    def trash(self, uuid: str) -> Optional[int]:
        """
        Move a live resource to the trashcan.

        Returns the row id in the trash, or None if there is no such live
        resource.
        """
        if not self.rtype.has_trash:
            raise ValueError(f"{self.rtype.name} has no trashcan")
        with self.db.atomic():
            if self.rtype.trash_in_table:
                if self.db.execute(
                    f"UPDATE {self.table_name} SET hidden = 2 WHERE uuid = ? AND hidden < 2;", (uuid,)
                ) == 0:
                    return None
                return self.find_id(uuid)
            new_id = self._move(uuid, to_trash=True)
        if new_id is not None:
            logger.info(f"Moved {self.rtype.name} {uuid} to trash")
        return new_id

    def restore(self, uuid: str) -> Optional[int]:
        """Move a resource from the trashcan back to the live table."""
        if not self.rtype.has_trash:
            raise ValueError(f"{self.rtype.name} has no trashcan")
        with self.db.atomic():
            if self.rtype.trash_in_table:
                if self.db.execute(
                    f"UPDATE {self.table_name} SET hidden = 0 WHERE uuid = ? AND hidden = 2;", (uuid,)
                ) == 0:
                    return None
                return self.find_id(uuid)
            new_id = self._move(uuid, to_trash=False)
        if new_id is not None:
            logger.info(f"Restored {self.rtype.name} {uuid} from trash")
        return new_id

    def delete_ultimate(self, uuid: str, trash: bool = False) -> bool:
        """Remove a resource for good, along with the grants on it."""
        entity = self.get_by_uuid(uuid, trash)
        if entity is None:
            return False
        in_trash_table = trash and not self.rtype.trash_in_table
        table = self.trash_table if in_trash_table else self.table_name
        location = LOCATION_TRASH if in_trash_table else LOCATION_TABLE
        with self.db.atomic():
            self.permissions.delete_for_resource(self.rtype.name, entity.id, location)
            membership = MEMBERSHIPS.get(self.rtype.name)
            if membership:
                members, column = membership
                members = f"{members}_trash" if in_trash_table else members
                self.db.execute(f'DELETE FROM {members} WHERE "{column}" = ?;', (entity.id,))
                self.permissions.delete_for_subject(self.rtype.name, entity.id, location)
            dependent = DEPENDENTS.get(self.rtype.name)
            if dependent:
                dependents, column = dependent
                self.db.execute(f'DELETE FROM {dependents} WHERE "{column}" = ?;', (entity.id,))
            self.db.execute(f"DELETE FROM {table} WHERE id = ?;", (entity.id,))
        logger.info(f"Deleted {self.rtype.name} {uuid}")
        return True

    def empty_trash(self, owner: Optional[int]) -> int:
        """Ultimately delete every trashed resource of an owner."""
        if not self.rtype.has_trash:
            return 0
        if self.rtype.trash_in_table:
            rows = self.db.fetch_all(
                f"SELECT uuid FROM {self.table_name} WHERE hidden = 2 AND owner = ?;", (owner,)
            )
        else:
            rows = self.db.fetch_all(f"SELECT uuid FROM {self.trash_table} WHERE owner = ?;", (owner,))
        count = 0
        for (uuid,) in rows:
            if self.delete_ultimate(uuid, trash=True):
                count += 1
        return count
