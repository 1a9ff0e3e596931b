"""
Exception hierarchy for gvm-manager.

Expected absence (resource not found, zero rows) is never an exception:
it is returned as None, False or a NOT_FOUND status. The classes below
cover storage failures, migration failures and external collaborators.
"""

from __future__ import annotations

from typing import Any


class ManagerError(Exception):
    """Base exception for all gvm-manager errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ConfigurationError(ManagerError):
    """Raised when the manager configuration is invalid."""

    pass


# ============================================================================
# Database Errors
# ============================================================================


class DatabaseError(ManagerError):
    """Base exception for SQL execution failures."""

    def __init__(
        self,
        message: str,
        sql: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = dict(details or {})
        if sql is not None:
            details["sql"] = sql
        super().__init__(message, details)
        self.sql = sql


class DatabaseBusyError(DatabaseError):
    """The embedded engine reported the database busy or locked."""

    pass


class GaveUpError(DatabaseError):
    """A bounded busy retry loop ran out of attempts."""

    pass


class LockUnavailableError(DatabaseError):
    """A NOWAIT lock could not be acquired."""

    pass


class UniqueViolationError(DatabaseError):
    """An insert or update violated a unique constraint."""

    pass


class QueryCancelledError(DatabaseError):
    """The statement was cancelled out-of-band."""

    pass


class NoRowsError(DatabaseError):
    """A scalar query that must return a row returned none."""

    pass


# ============================================================================
# Migration Errors
# ============================================================================


class MigrationError(ManagerError):
    """Raised when a schema transition cannot be applied."""

    def __init__(self, message: str, version: int | None = None):
        super().__init__(message, {"version": version} if version is not None else None)
        self.version = version


class MigrationPreconditionError(MigrationError):
    """The stored version did not match the transition's starting version."""

    pass


# ============================================================================
# Agent Controller Errors
# ============================================================================


class AgentControllerError(ManagerError):
    """Raised when the remote agent controller rejects or fails a request."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
