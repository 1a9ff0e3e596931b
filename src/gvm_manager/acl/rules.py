"""
Access Rule Tree

Access rules are small tagged variants that compile themselves into SQL
boolean expressions for a RuleContext. The imperative checks evaluate a
compiled tree against a single row; the owned-clause builder splices the
same compiled tree into list queries. Both go through `access_rule`, so
the two can never disagree.

All literals are quoted; the caller is an SQL expression yielding the
caller's users.id, which lets the same tree run per-user in bulk.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ..db.backend import insert_literal
from ..db.schema import LOCATION_TABLE
from .types import (
    PERMISSION_EVERYTHING,
    PERMISSION_SUPER,
    ROLE_UUID_ADMIN,
    ResourceType,
    is_get_class,
)

ALWAYS_SQL = "1 = 1"
NEVER_SQL = "1 = 0"

# Grant names: None matches any permission name, () matches nothing
GrantNames = Optional[tuple[str, ...]]


def caller_sql(user_uuid: str) -> str:
    """SQL expression for the id of the user with the given UUID."""
    return f"(SELECT id FROM users WHERE uuid = {insert_literal(user_uuid)})"


def subject_is_caller(alias: str, caller: str) -> str:
    """Permission row `alias` is granted to the caller, a group of theirs or a role of theirs."""
    return (
        f"(({alias}.subject_type = 'user' AND {alias}.subject = {caller})"
        f" OR ({alias}.subject_type = 'group' AND {alias}.subject IN"
        f' (SELECT DISTINCT "group" FROM group_users WHERE "user" = {caller}))'
        f" OR ({alias}.subject_type = 'role' AND {alias}.subject IN"
        f' (SELECT DISTINCT role FROM role_users WHERE "user" = {caller})))'
    )


def everything_sql(caller: str) -> str:
    return (
        f"EXISTS (SELECT 1 FROM permissions AS everything"
        f" WHERE everything.name = '{PERMISSION_EVERYTHING}'"
        f" AND everything.resource = 0"
        f" AND everything.subject_location = {LOCATION_TABLE}"
        f" AND {subject_is_caller('everything', caller)})"
    )


def super_sql(owner: str, caller: str) -> str:
    """Caller holds Super on everyone, on `owner`, or on a role or group of `owner`."""
    return (
        f"EXISTS (SELECT 1 FROM permissions AS supers"
        f" WHERE supers.name = '{PERMISSION_SUPER}'"
        f" AND (supers.resource = 0"
        f" OR (supers.resource_type = 'user' AND supers.resource = {owner})"
        f" OR (supers.resource_type = 'role' AND supers.resource IN"
        f' (SELECT role FROM role_users WHERE "user" = {owner}))'
        f" OR (supers.resource_type = 'group' AND supers.resource IN"
        f' (SELECT "group" FROM group_users WHERE "user" = {owner})))'
        f" AND supers.subject_location = {LOCATION_TABLE}"
        f" AND {subject_is_caller('supers', caller)})"
    )


def names_sql(alias: str, names: GrantNames) -> str:
    if names is None:
        return ""
    if not names:
        return " AND 1 = 0"
    return f" AND {alias}.name IN ({', '.join(insert_literal(n) for n in names)})"


@dataclass(frozen=True)
class RuleContext:
    resource_type: ResourceType
    table: str
    caller: str

    def column(self, name: str) -> str:
        return f"{self.table}.{name}"

    def owner_sql(self) -> str:
        via = self.resource_type.owner_via
        if via:
            other, column = via
            return f"(SELECT owner FROM {other} WHERE {other}.id = {self.column(column)})"
        return self.column("owner")

    def owner_exists(self, condition: str) -> str:
        """Condition on the owner column, following owner_via through a join."""
        via = self.resource_type.owner_via
        if via:
            other, column = via
            return (f"EXISTS (SELECT 1 FROM {other} WHERE {other}.id = {self.column(column)}"
                    f" AND {other}.owner {condition})")
        return f"{self.column('owner')} {condition}"


class Rule:
    def compile(self, ctx: RuleContext) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class Always(Rule):
    def compile(self, ctx: RuleContext) -> str:
        return ALWAYS_SQL


@dataclass(frozen=True)
class Never(Rule):
    def compile(self, ctx: RuleContext) -> str:
        return NEVER_SQL


@dataclass(frozen=True)
class GlobalResource(Rule):
    """Owner is NULL: the resource is shared with everyone."""

    def compile(self, ctx: RuleContext) -> str:
        return ctx.owner_exists("IS NULL")


@dataclass(frozen=True)
class OwnerMatch(Rule):
    def compile(self, ctx: RuleContext) -> str:
        return ctx.owner_exists(f"= {ctx.caller}")


@dataclass(frozen=True)
class OwnerNamed(Rule):
    """Owner is the user with the given name."""
    name: str

    def compile(self, ctx: RuleContext) -> str:
        return ctx.owner_exists(f"= (SELECT id FROM users WHERE name = {insert_literal(self.name)})")


@dataclass(frozen=True)
class SuperOnOwner(Rule):
    def compile(self, ctx: RuleContext) -> str:
        owner = ctx.owner_sql()
        return f"({owner} IS NOT NULL AND {super_sql(owner, ctx.caller)})"


@dataclass(frozen=True)
class EverythingOverride(Rule):
    def compile(self, ctx: RuleContext) -> str:
        return everything_sql(ctx.caller)


@dataclass(frozen=True)
class IsAdmin(Rule):
    def compile(self, ctx: RuleContext) -> str:
        return (
            f"EXISTS (SELECT 1 FROM role_users"
            f" WHERE role_users.role = (SELECT id FROM roles WHERE uuid = '{ROLE_UUID_ADMIN}')"
            f' AND role_users."user" = {ctx.caller})'
        )


@dataclass(frozen=True)
class GroupOrRoleGrant(Rule):
    """A live permission on this row granted to the caller directly, via a group or via a role."""
    names: GrantNames = None

    def compile(self, ctx: RuleContext) -> str:
        return (
            f"EXISTS (SELECT 1 FROM permissions AS grants"
            f" WHERE grants.resource_uuid = {ctx.column('uuid')}"
            f" AND grants.resource_type = {insert_literal(ctx.resource_type.name)}"
            f" AND grants.resource_location = {LOCATION_TABLE}"
            f"{names_sql('grants', self.names)}"
            f" AND grants.subject_location = {LOCATION_TABLE}"
            f" AND {subject_is_caller('grants', ctx.caller)})"
        )


@dataclass(frozen=True)
class TaskDelegated(Rule):
    """A permission on the row's owning task."""
    names: GrantNames = None

    def compile(self, ctx: RuleContext) -> str:
        task_column = ctx.resource_type.task_column
        if task_column is None:
            return NEVER_SQL
        return (
            f"EXISTS (SELECT 1 FROM permissions AS task_grants"
            f" WHERE task_grants.resource_type = 'task'"
            f" AND task_grants.resource_uuid ="
            f" (SELECT uuid FROM tasks WHERE tasks.id = {ctx.column(task_column)})"
            f" AND task_grants.resource_location = {LOCATION_TABLE}"
            f"{names_sql('task_grants', self.names)}"
            f" AND task_grants.subject_location = {LOCATION_TABLE}"
            f" AND {subject_is_caller('task_grants', ctx.caller)})"
        )


@dataclass(frozen=True)
class SubjectIsCaller(Rule):
    """The row is a permission whose subject is the caller."""

    def compile(self, ctx: RuleContext) -> str:
        return (f"({ctx.column('subject_location')} = {LOCATION_TABLE}"
                f" AND {subject_is_caller(ctx.table, ctx.caller)})")


@dataclass(frozen=True)
class TaskHidden(Rule):
    trash: bool

    def compile(self, ctx: RuleContext) -> str:
        if self.trash:
            return f"{ctx.column('hidden')} = 2"
        return f"{ctx.column('hidden')} < 2"


class AnyOf(Rule):
    def __init__(self, *rules: Rule):
        self.rules = rules

    def compile(self, ctx: RuleContext) -> str:
        if not self.rules:
            return NEVER_SQL
        return "(" + " OR ".join(rule.compile(ctx) for rule in self.rules) + ")"

    def __repr__(self) -> str:
        return f"AnyOf{self.rules!r}"


class AllOf(Rule):
    def __init__(self, *rules: Rule):
        self.rules = rules

    def compile(self, ctx: RuleContext) -> str:
        if not self.rules:
            return ALWAYS_SQL
        return "(" + " AND ".join(rule.compile(ctx) for rule in self.rules) + ")"

    def __repr__(self) -> str:
        return f"AllOf{self.rules!r}"


def grant_names(operation: Optional[str]) -> GrantNames:
    """Names of permissions that satisfy a check for `operation`."""
    if is_get_class(operation):
        return None
    return (operation,)


def ownership_rule(rtype: ResourceType, trash: bool = False) -> Rule:
    """The caller owns the row: it is global, theirs, or they hold Super on its owner."""
    if rtype.feed:
        return Always()
    owners: list[Rule] = [OwnerMatch(), SuperOnOwner()]
    if rtype.global_owned:
        owners.insert(0, GlobalResource())
    rule: Rule = AnyOf(*owners)
    if rtype.trash_in_table:
        rule = AllOf(TaskHidden(trash), rule)
    return rule


def access_rule(rtype: ResourceType, names: GrantNames, trash: bool = False) -> Rule:
    """
    Full access rule for a row of `rtype`.

    Trashed rows are accessible only through ownership. Live rows are
    also reachable through Everything and, unless `names` is empty,
    through grants on the row (or, for reports and results, on the
    owning task). Permission rows follow their own rules: viewing is
    open to their subjects, to holders of any grant on them and to
    admins for global ones; anything else needs ownership or Everything.
    """
    if rtype.feed:
        return Always()
    ownership = ownership_rule(rtype, trash)
    if trash or names == ():
        return ownership

    options: list[Rule] = [ownership, EverythingOverride()]

    if rtype.name == "permission":
        if names is None:
            options.extend([
                SubjectIsCaller(),
                GroupOrRoleGrant(None),
                AllOf(GlobalResource(), IsAdmin()),
            ])
    else:
        options.append(GroupOrRoleGrant(names))
        if rtype.task_column:
            options.append(TaskDelegated(names))

    rule: Rule = AnyOf(*options)
    if rtype.trash_in_table:
        rule = AllOf(TaskHidden(False), rule)
    return rule


def widen_permissions(permissions: Optional[Sequence[str]]) -> GrantNames:
    """
    Grant names for the owned clause.

    Empty means ownership only. "any", or any get-class name, matches every
    permission name, mirroring the imperative check.
    """
    if not permissions:
        return ()
    if any(p == "any" or is_get_class(p) for p in permissions):
        return None
    return tuple(permissions)
