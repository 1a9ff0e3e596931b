"""
Permission Repository

Creates grants with subject and resource resolved from UUIDs, and keeps
grants in step with their resources as those move to and from the trash.
"""

from __future__ import annotations

import logging
from typing import Optional

from ...acl.types import get_resource_type
from ...db.schema import LOCATION_TABLE, LOCATION_TRASH
from ..models import Permission, SubjectType
from .base import Repository

logger = logging.getLogger(__name__)

SUBJECT_TABLES = {
    SubjectType.USER: "users",
    SubjectType.GROUP: "groups",
    SubjectType.ROLE: "roles",
}


class PermissionRepository(Repository[Permission]):
    """Repository for permission grants."""

    @property
    def table_name(self) -> str:
        return "permissions"

    @property
    def model_class(self) -> type[Permission]:
        return Permission

    def create_permission(
        self,
        name: str,
        subject_type: SubjectType | str,
        subject_uuid: str,
        resource_type: Optional[str] = None,
        resource_uuid: Optional[str] = None,
        owner: Optional[int] = None,
        comment: str = "",
    ) -> Optional[Permission]:
        """
        Grant `name` to a subject, on a resource or globally.

        Returns None if the subject or resource does not exist.
        """
        subject_type = SubjectType(subject_type)
        subject = self.find_id(subject_uuid, SUBJECT_TABLES[subject_type])
        if subject is None:
            logger.warning(f"Permission subject not found: {subject_type.value} {subject_uuid}")
            return None

        resource = 0
        if resource_uuid:
            rtype = get_resource_type(resource_type)
            if rtype.table is None:
                resource = -1
            else:
                found = self.find_id(resource_uuid, rtype.table)
                if found is None:
                    logger.warning(f"Permission resource not found: {resource_type} {resource_uuid}")
                    return None
                resource = found

        permission = Permission(
            name=name,
            owner=owner,
            comment=comment,
            resource_type=resource_type if resource_uuid else None,
            resource=resource,
            resource_uuid=resource_uuid,
            resource_location=LOCATION_TABLE,
            subject_type=subject_type,
            subject=subject,
            subject_location=LOCATION_TABLE,
        )
        created = self.create(permission)
        logger.debug(
            f"Granted {name} to {subject_type.value} {subject_uuid}"
            f" on {resource_type or 'everything'} {resource_uuid or ''}".rstrip()
        )
        return created

    def list_for_subject(self, subject_type: SubjectType | str, subject: int) -> list[Permission]:
        return self.list(
            "permissions.subject_type = ? AND permissions.subject = ?",
            (SubjectType(subject_type).value, subject),
        )

    def list_for_resource(self, resource_type: str, resource_uuid: str) -> list[Permission]:
        return self.list(
            "permissions.resource_type = ? AND permissions.resource_uuid = ?",
            (resource_type, resource_uuid),
        )

    def relocate_resource(self, resource_type: str, old_id: int, new_id: int, to_trash: bool) -> int:
        """Point grants on a resource at its new row after a trash move."""
        location_from = LOCATION_TABLE if to_trash else LOCATION_TRASH
        location_to = LOCATION_TRASH if to_trash else LOCATION_TABLE
        count = 0
        for table in ("permissions", "permissions_trash"):
            count += self.db.execute(
                f"UPDATE {table} SET resource = ?, resource_location = ?"
                f" WHERE resource_type = ? AND resource = ? AND resource_location = ?;",
                (new_id, location_to, resource_type, old_id, location_from),
            )
        return count

    def relocate_subject(self, subject_type: str, old_id: int, new_id: int, to_trash: bool) -> int:
        """Point grants to a group or role at its new row after a trash move."""
        location_from = LOCATION_TABLE if to_trash else LOCATION_TRASH
        location_to = LOCATION_TRASH if to_trash else LOCATION_TABLE
        count = 0
        for table in ("permissions", "permissions_trash"):
            count += self.db.execute(
                f"UPDATE {table} SET subject = ?, subject_location = ?"
                f" WHERE subject_type = ? AND subject = ? AND subject_location = ?;",
                (new_id, location_to, subject_type, old_id, location_from),
            )
        return count

    def delete_for_resource(self, resource_type: str, resource: int, location: int) -> int:
        count = 0
        for table in ("permissions", "permissions_trash"):
            count += self.db.execute(
                f"DELETE FROM {table} WHERE resource_type = ? AND resource = ? AND resource_location = ?;",
                (resource_type, resource, location),
            )
        return count

    def delete_for_subject(self, subject_type: str, subject: int, location: int) -> int:
        count = 0
        for table in ("permissions", "permissions_trash"):
            count += self.db.execute(
                f"DELETE FROM {table} WHERE subject_type = ? AND subject = ? AND subject_location = ?;",
                (subject_type, subject, location),
            )
        return count
