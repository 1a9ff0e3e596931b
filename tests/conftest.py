"""
Shared fixtures: a fresh SQLite database at the current schema version and
a small helper for populating users, groups, roles, grants and resources.
"""

import pytest

from gvm_manager.data.models import (
    Group,
    Report,
    Result,
    Role,
    Scanner,
    Target,
    Task,
)
from gvm_manager.data.repos import (
    GroupRepository,
    PermissionRepository,
    Repository,
    ResourceRepository,
    RoleRepository,
    UserRepository,
)
from gvm_manager.db import SQLiteBackend
from gvm_manager.migrate import create_database


class _ModelRepository(Repository):
    """Plain repository for tables without an owner column of their own."""

    def __init__(self, db, table, model):
        super().__init__(db)
        self._table = table
        self._model = model

    @property
    def table_name(self):
        return self._table

    @property
    def model_class(self):
        return self._model


class Store:
    """Populates a database for access-control scenarios."""

    def __init__(self, db):
        self.db = db
        self.users = UserRepository(db)
        self.groups = GroupRepository(db)
        self.roles = RoleRepository(db)
        self.permissions = PermissionRepository(db)
        self.targets = ResourceRepository(db, "target", Target)
        self.tasks = ResourceRepository(db, "task", Task)
        self.scanners = ResourceRepository(db, "scanner", Scanner)
        self.reports = _ModelRepository(db, "reports", Report)
        self.results = _ModelRepository(db, "results", Result)

    def user(self, name):
        return self.users.create_user(name, password="secret")

    def group(self, name, *members):
        group = self.groups.create(Group(name=name))
        for user in members:
            self.users.add_to_group(user.id, group.id)
        return group

    def role(self, name, *members, uuid=None):
        role = self.roles.create(Role(name=name, **({"uuid": uuid} if uuid else {})))
        for user in members:
            self.users.add_to_role(user.id, role.id)
        return role

    def grant(self, name, subject, resource_type=None, resource=None, subject_type="user", owner=None):
        return self.permissions.create_permission(
            name,
            subject_type,
            subject.uuid,
            resource_type=resource_type,
            resource_uuid=resource.uuid if resource is not None else None,
            owner=owner.id if owner else None,
        )

    def target(self, owner, name="target"):
        return self.targets.create(Target(name=name, owner=owner.id if owner else None, hosts="127.0.0.1"))

    def task(self, owner, name="task", **fields):
        return self.tasks.create(Task(name=name, owner=owner.id if owner else None, **fields))

    def report(self, owner, task):
        return self.reports.create(Report(owner=owner.id if owner else None, task=task.id))

    def result(self, task, report, severity=5.0):
        return self.results.create(Result(task=task.id, report=report.id, severity=severity))


@pytest.fixture
def db(tmp_path):
    backend = SQLiteBackend(tmp_path / "gvmd.db", retries=2, busy_sleep=0.0001, busy_sleep_max=0.001)
    backend.connect()
    create_database(backend)
    yield backend
    backend.close()


@pytest.fixture
def empty_db(tmp_path):
    backend = SQLiteBackend(tmp_path / "empty.db", retries=2, busy_sleep=0.0001, busy_sleep_max=0.001)
    backend.connect()
    yield backend
    backend.close()


@pytest.fixture
def store(db):
    return Store(db)
