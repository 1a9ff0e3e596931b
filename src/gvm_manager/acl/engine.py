"""
Access Control Engine

Decides whether a caller may perform a named operation, and produces the
owned clause that list queries splice into their WHERE.

Decision order for a resource:
1. The internal caller (empty UUID) is always allowed.
2. Ownership: global row, caller's row, or Super on the row's owner.
3. Trash is owner-only.
4. Everything, then grants on the row (or its task) to the caller,
   a group of the caller, or a role of the caller.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..db.backend import DatabaseBackend, insert_literal
from ..db.schema import LOCATION_TABLE
from .context import Credentials, GetParams
from .rules import (
    ALWAYS_SQL,
    NEVER_SQL,
    AllOf,
    AnyOf,
    GlobalResource,
    OwnerMatch,
    OwnerNamed,
    Rule,
    RuleContext,
    access_rule,
    caller_sql,
    everything_sql,
    grant_names,
    ownership_rule,
    subject_is_caller,
    super_sql,
    widen_permissions,
)
from .types import (
    ROLE_UUID_ADMIN,
    ROLE_UUID_OBSERVER,
    ROLE_UUID_SUPER_ADMIN,
    ROLE_UUID_USER,
    ResourceType,
    get_resource_type,
    is_get_class,
)

logger = logging.getLogger(__name__)


def sql_functions() -> dict[str, str]:
    """Server-side SQL functions compiled from the same rules as the engine."""
    return {
        "user_can_everything": (
            "CREATE OR REPLACE FUNCTION user_can_everything (text)"
            " RETURNS boolean AS $$"
            f" SELECT {everything_sql('(SELECT id FROM users WHERE uuid = $1)')};"
            " $$ LANGUAGE SQL STABLE;"
        ),
    }


class AccessControl:
    """
    Access decisions for one caller.

    All checks return plain booleans and never raise for "not found";
    unknown resource types are programming errors and raise ValueError.
    """

    def __init__(self, db: DatabaseBackend, credentials: Credentials):
        self.db = db
        self.credentials = credentials

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def caller(self) -> str:
        assert self.credentials.uuid is not None, "anonymous caller has no id"
        return caller_sql(self.credentials.uuid)

    def _exists(self, condition: str, params: Sequence = ()) -> bool:
        return self.db.scalar_int(f"SELECT EXISTS ({condition});", params) > 0

    def _context(self, rtype: ResourceType, trash: bool) -> RuleContext:
        table = rtype.table_for(trash)
        assert table is not None, f"{rtype.name} has no table"
        return RuleContext(rtype, table, self.caller)

    def _row_matches(self, rtype: ResourceType, trash: bool, uuid: str, rule: Rule) -> bool:
        ctx = self._context(rtype, trash)
        return self._exists(
            f"SELECT 1 FROM {ctx.table} WHERE {ctx.table}.uuid = ? AND {rule.compile(ctx)}",
            (uuid,),
        )

    # ------------------------------------------------------------------
    # Global checks
    # ------------------------------------------------------------------

    def user_may(self, operation: str) -> bool:
        """
        Whether the caller may perform `operation` at all.

        A get_<type>s operation is also satisfied by any global permission
        whose name ends in <type>.
        """
        assert operation, "operation is required"
        if self.credentials.is_internal:
            return True
        if self.credentials.is_anonymous:
            return False
        if self.user_can_everything():
            return True

        operation = operation.lower()
        names = f"lower(grants.name) = {insert_literal(operation)}"
        if is_get_class(operation) and len(operation) > 5:
            stem = operation[4:-1]
            names = f"({names} OR lower(grants.name) LIKE {insert_literal('%' + stem)})"

        return self._exists(
            f"SELECT 1 FROM permissions AS grants"
            f" WHERE grants.resource = 0"
            f" AND {names}"
            f" AND grants.subject_location = {LOCATION_TABLE}"
            f" AND {subject_is_caller('grants', self.caller)}"
        )

    def user_can_everything(self, user_uuid: Optional[str] = None) -> bool:
        """Whether a user holds Everything through themselves, a group or a role."""
        uuid = user_uuid if user_uuid is not None else self.credentials.uuid
        if not uuid:
            return False
        return self._exists(f"SELECT 1 WHERE {everything_sql(caller_sql(uuid))}")

    def user_has_super(self, other_user: int) -> bool:
        """Whether the caller holds Super on the user with row id `other_user`."""
        if self.credentials.is_internal:
            return True
        if self.credentials.is_anonymous:
            return False
        return self._exists(f"SELECT 1 WHERE {super_sql(str(int(other_user)), self.caller)}")

    def _has_role(self, role_uuid: str, user_uuid: Optional[str]) -> bool:
        uuid = user_uuid if user_uuid is not None else self.credentials.uuid
        if not uuid:
            return False
        return self._exists(
            'SELECT 1 FROM role_users'
            ' WHERE role = (SELECT id FROM roles WHERE uuid = ?)'
            ' AND "user" = (SELECT id FROM users WHERE uuid = ?)',
            (role_uuid, uuid),
        )

    def user_is_admin(self, user_uuid: Optional[str] = None) -> bool:
        return self._has_role(ROLE_UUID_ADMIN, user_uuid)

    def user_is_observer(self, user_uuid: Optional[str] = None) -> bool:
        return self._has_role(ROLE_UUID_OBSERVER, user_uuid)

    def user_is_user(self, user_uuid: Optional[str] = None) -> bool:
        return self._has_role(ROLE_UUID_USER, user_uuid)

    def user_is_super_admin(self, user_uuid: Optional[str] = None) -> bool:
        return self._has_role(ROLE_UUID_SUPER_ADMIN, user_uuid)

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def user_owns_result(self, result_uuid: str) -> bool:
        """A result is owned through its report; global reports are owned by everyone."""
        if self.credentials.is_internal:
            return True
        if self.credentials.is_anonymous:
            return False
        rtype = get_resource_type("result")
        return self._row_matches(rtype, False, result_uuid, ownership_rule(rtype))

    def user_owns_uuid(self, resource_type: str, uuid: str, trash: bool = False) -> bool:
        """
        Generic owner check on the live or trash table.

        Feed types are always owned. Results delegate to user_owns_result.
        """
        rtype = get_resource_type(resource_type)
        if rtype.feed or self.credentials.is_internal:
            return True
        if self.credentials.is_anonymous:
            return False
        if rtype.name == "result":
            return self.user_owns_result(uuid)
        if trash and not rtype.has_trash:
            return False
        return self._row_matches(rtype, trash, uuid, ownership_rule(rtype, trash))

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def user_has_access_uuid(
        self,
        resource_type: str,
        uuid: str,
        permission: Optional[str] = None,
        trash: bool = False,
    ) -> bool:
        """
        Full access decision for a single resource.

        `permission` is the operation name; None is treated as a get.
        """
        assert uuid is not None, "uuid is required"
        if self.credentials.is_internal:
            return True
        if self.credentials.is_anonymous:
            return False

        if self.user_owns_uuid(resource_type, uuid, trash):
            return True

        if trash:
            return False

        rtype = get_resource_type(resource_type)
        allowed = self._row_matches(rtype, False, uuid, access_rule(rtype, grant_names(permission)))
        logger.debug(
            f"Access {'granted' if allowed else 'denied'}: {self.credentials.username or self.credentials.uuid}"
            f" {permission or 'get'} {resource_type} {uuid}"
        )
        return allowed

    def where_owned(
        self,
        resource_type: str,
        get: Optional[GetParams] = None,
        owned: bool = True,
        owner_filter: Optional[str] = None,
        resource: Optional[int] = None,
        permissions: Optional[Sequence[str]] = None,
    ) -> str:
        """
        Owned clause for listing `resource_type`.

        With `owner_filter` "any" this selects exactly the rows
        user_has_access_uuid would allow for the same permissions. None
        narrows that to rows of the caller and global rows, and a user name
        narrows it to rows owned by that user. `permissions` empty means
        ownership only.
        """
        if not owned:
            return ALWAYS_SQL
        if resource or self.credentials.is_anonymous or self.credentials.is_internal:
            return ALWAYS_SQL

        rtype = get_resource_type(resource_type)
        if rtype.feed:
            return ALWAYS_SQL

        trash = bool(get and get.trash)
        if trash and not rtype.has_trash:
            return NEVER_SQL

        rule = access_rule(rtype, widen_permissions(permissions), trash)
        if owner_filter is None:
            rule = AllOf(AnyOf(OwnerMatch(), GlobalResource()), rule)
        elif owner_filter != "any":
            rule = AllOf(OwnerNamed(owner_filter), rule)
        return rule.compile(self._context(rtype, trash))
