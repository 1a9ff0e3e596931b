"""
Manager Operations

Create, modify, get, list, trash, restore and delete resources on behalf of
a caller. Each operation checks the caller's access before touching the
store. Denial and absence are reported identically, so a caller cannot
learn of resources it may not see.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional, Tuple

from pydantic import BaseModel

from .acl.context import Credentials, GetParams
from .acl.engine import AccessControl
from .acl.types import RESOURCE_TYPES, get_resource_type
from .data.models import (
    Agent,
    AgentGroup,
    Alert,
    Config,
    Credential,
    Filter,
    Group,
    Nvt,
    Permission,
    Report,
    Result,
    Role,
    Scanner,
    Schedule,
    Tag,
    Target,
    Task,
    User,
)
from .data.repos import ResourceRepository
from .db.backend import DatabaseBackend
from .errors import DatabaseError, UniqueViolationError

logger = logging.getLogger(__name__)


class OperationStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    IN_USE = "in_use"
    ERROR = "error"


MODELS: dict[str, type[BaseModel]] = {
    "agent": Agent,
    "agent_group": AgentGroup,
    "alert": Alert,
    "config": Config,
    "credential": Credential,
    "filter": Filter,
    "group": Group,
    "nvt": Nvt,
    "permission": Permission,
    "report": Report,
    "result": Result,
    "role": Role,
    "scanner": Scanner,
    "schedule": Schedule,
    "tag": Tag,
    "target": Target,
    "task": Task,
    "user": User,
}

# Live references that keep a resource from being trashed or deleted:
# type -> [(referencing table, column)]
REFERENCES: dict[str, list[tuple[str, str]]] = {
    "agent": [("agent_group_agents", "agent")],
    "config": [("tasks", "config")],
    "credential": [("scanners", "credential")],
    "filter": [("alerts", "filter")],
    "scanner": [("tasks", "scanner"), ("configs", "scanner"), ("agents", "scanner")],
    "target": [("tasks", "target")],
}

Outcome = Tuple[OperationStatus, Any]


class ResourceManager:
    """Resource operations for one caller."""

    def __init__(self, db: DatabaseBackend, credentials: Credentials):
        self.db = db
        self.credentials = credentials
        self.acl = AccessControl(db, credentials)
        self._repos: dict[str, ResourceRepository] = {}

    def repository(self, resource_type: str) -> ResourceRepository:
        if resource_type not in self._repos:
            model = MODELS.get(resource_type)
            if model is None:
                raise ValueError(f"No model for resource type {resource_type}")
            self._repos[resource_type] = ResourceRepository(self.db, resource_type, model)
        return self._repos[resource_type]

    def caller_id(self) -> Optional[int]:
        """Row id of the calling user, None for internal and anonymous callers."""
        if not self.credentials.uuid:
            return None
        return self.db.scalar_int64("SELECT id FROM users WHERE uuid = ?;", (self.credentials.uuid,))

    def in_use(self, resource_type: str, resource_id: int) -> bool:
        for table, column in REFERENCES.get(resource_type, []):
            if self.db.exists(f'SELECT 1 FROM {table} WHERE "{column}" = ?', (resource_id,)):
                return True
        return False

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(self, resource_type: str, **fields) -> Outcome:
        if not self.acl.user_may(f"create_{resource_type}"):
            return OperationStatus.PERMISSION_DENIED, None
        repo = self.repository(resource_type)
        if "owner" in repo.model_class.model_fields and "owner" not in fields:
            fields["owner"] = self.caller_id()
        try:
            entity = repo.create(repo.model_class(**fields))
        except UniqueViolationError as e:
            logger.warning(f"Failed to create {resource_type}: {e}")
            return OperationStatus.ERROR, None
        logger.info(f"Created {resource_type} {entity.uuid}")
        return OperationStatus.OK, entity

    def get(self, resource_type: str, uuid: str, trash: bool = False) -> Outcome:
        rtype = get_resource_type(resource_type)
        if not self.acl.user_has_access_uuid(resource_type, uuid, rtype.get_permission, trash):
            return OperationStatus.NOT_FOUND, None
        entity = self.repository(resource_type).get_by_uuid(uuid, trash)
        if entity is None:
            return OperationStatus.NOT_FOUND, None
        return OperationStatus.OK, entity

    def list(self, resource_type: str, trash: bool = False,
             owner_filter: Optional[str] = None) -> Outcome:
        rtype = get_resource_type(resource_type)
        table = rtype.table_for(trash)
        if table is None:
            return OperationStatus.OK, []
        where = self.acl.where_owned(
            resource_type,
            GetParams(trash=trash),
            owner_filter=owner_filter,
            permissions=[rtype.get_permission],
        )
        return OperationStatus.OK, self.repository(resource_type).list(where, table=table)

    def modify(self, resource_type: str, uuid: str, **updates) -> Outcome:
        if not self.acl.user_has_access_uuid(resource_type, uuid, f"modify_{resource_type}"):
            return OperationStatus.NOT_FOUND, None
        repo = self.repository(resource_type)
        entity = repo.get_by_uuid(uuid)
        if entity is None:
            return OperationStatus.NOT_FOUND, None
        try:
            updated = repo.update(entity.id, **updates)
        except UniqueViolationError as e:
            logger.warning(f"Failed to modify {resource_type} {uuid}: {e}")
            return OperationStatus.ERROR, None
        return OperationStatus.OK, updated

    def delete(self, resource_type: str, uuid: str, ultimate: bool = False) -> Outcome:
        """
        Move a resource to the trashcan, or remove it for good.

        Types without a trashcan are always removed for good. A resource
        already in the trashcan is removed from there when `ultimate` is set.
        """
        rtype = get_resource_type(resource_type)
        repo = self.repository(resource_type)
        permission = f"delete_{resource_type}"

        live = repo.get_by_uuid(uuid)
        if live is None and ultimate and rtype.has_trash:
            if not self.acl.user_has_access_uuid(resource_type, uuid, permission, trash=True):
                return OperationStatus.NOT_FOUND, None
            try:
                deleted = repo.delete_ultimate(uuid, trash=True)
            except DatabaseError as e:
                logger.error(f"Failed to delete {resource_type} {uuid} from trash: {e}")
                return OperationStatus.ERROR, None
            return (OperationStatus.OK if deleted else OperationStatus.NOT_FOUND), None

        if live is None or not self.acl.user_has_access_uuid(resource_type, uuid, permission):
            return OperationStatus.NOT_FOUND, None
        if self.in_use(resource_type, live.id):
            return OperationStatus.IN_USE, None

        try:
            if rtype.has_trash and not ultimate:
                repo.trash(uuid)
            else:
                repo.delete_ultimate(uuid)
        except DatabaseError as e:
            logger.error(f"Failed to delete {resource_type} {uuid}: {e}")
            return OperationStatus.ERROR, None
        return OperationStatus.OK, None

    def restore(self, resource_type: str, uuid: str) -> Outcome:
        rtype = get_resource_type(resource_type)
        if not rtype.has_trash:
            return OperationStatus.NOT_FOUND, None
        if not self.acl.user_may("restore") or not self.acl.user_owns_uuid(resource_type, uuid, trash=True):
            return OperationStatus.NOT_FOUND, None
        if self.repository(resource_type).restore(uuid) is None:
            return OperationStatus.NOT_FOUND, None
        return OperationStatus.OK, None

    def empty_trash(self) -> Outcome:
        """Remove every trashed resource owned by the caller."""
        if not self.acl.user_may("empty_trashcan"):
            return OperationStatus.PERMISSION_DENIED, 0
        owner = self.caller_id()
        count = 0
        with self.db.atomic():
            for rtype in RESOURCE_TYPES.values():
                if rtype.has_trash and not rtype.feed:
                    count += self.repository(rtype.name).empty_trash(owner)
        logger.info(f"Emptied trashcan: {count} resources removed")
        return OperationStatus.OK, count
