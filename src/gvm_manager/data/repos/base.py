"""
Base Repository

Abstract base class for all repositories.
Maps pydantic models onto tables through the SQL execution shim.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, Sequence, TypeVar

from pydantic import BaseModel

from ...db.backend import DatabaseBackend
from ..models.identity import now

T = TypeVar("T", bound=BaseModel)


def _column_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    return value


class Repository(ABC, Generic[T]):
    """
    Abstract repository base class.

    Column names are the model's field names; `id` is assigned by the
    database on insert.
    """

    def __init__(self, db: DatabaseBackend):
        self.db = db

    @property
    @abstractmethod
    def table_name(self) -> str:
        """Get the database table name for this repository."""
        pass

    @property
    @abstractmethod
    def model_class(self) -> type[T]:
        """Get the Pydantic model class for this repository."""
        pass

    @property
    def columns(self) -> list[str]:
        return [name for name in self.model_class.model_fields if name != "id"]

    def _select(self, table: Optional[str] = None) -> str:
        table = table or self.table_name
        names = ", ".join(f'{table}."{c}"' for c in ["id", *self.columns])
        return f"SELECT {names} FROM {table}"

    def _to_model(self, row: Sequence[Any]) -> T:
        return self.model_class(**dict(zip(["id", *self.columns], row)))

    def get(self, id: int, table: Optional[str] = None) -> Optional[T]:
        """Get entity by row id."""
        table = table or self.table_name
        row = self.db.fetch_one(f"{self._select(table)} WHERE {table}.id = ?;", (id,))
        return self._to_model(row) if row else None

    def get_by_uuid(self, uuid: str, table: Optional[str] = None) -> Optional[T]:
        table = table or self.table_name
        row = self.db.fetch_one(f"{self._select(table)} WHERE {table}.uuid = ?;", (uuid,))
        return self._to_model(row) if row else None

    def find_id(self, uuid: str, table: Optional[str] = None) -> Optional[int]:
        """Row id for a UUID, or None if there is no such row."""
        return self.db.scalar_int64(
            f"SELECT id FROM {table or self.table_name} WHERE uuid = ?;", (uuid,)
        )

    def create(self, entity: T, table: Optional[str] = None) -> T:
        """Insert a new entity and return it with its row id."""
        data = entity.model_dump(mode="json", exclude={"id"})
        names = ", ".join(f'"{c}"' for c in data)
        marks = ", ".join("?" for _ in data)
        self.db.execute(
            f"INSERT INTO {table or self.table_name} ({names}) VALUES ({marks});",
            [_column_value(v) for v in data.values()],
        )
        return entity.model_copy(update={"id": self.db.last_insert_id()})

    def update(self, id: int, **updates) -> Optional[T]:
        """Update columns of an entity."""
        if not updates:
            return self.get(id)
        if "modification_time" in self.columns and "modification_time" not in updates:
            updates["modification_time"] = now()
        unknown = set(updates) - set(self.columns)
        if unknown:
            raise ValueError(f"Unknown columns for {self.table_name}: {sorted(unknown)}")
        assignments = ", ".join(f'"{c}" = ?' for c in updates)
        changed = self.db.execute(
            f"UPDATE {self.table_name} SET {assignments} WHERE id = ?;",
            [*(_column_value(v) for v in updates.values()), id],
        )
        return self.get(id) if changed else None

    def delete(self, id: int) -> bool:
        """Delete an entity."""
        return self.db.execute(f"DELETE FROM {self.table_name} WHERE id = ?;", (id,)) > 0

    def list(
        self,
        where: Optional[str] = None,
        params: Sequence[Any] = (),
        limit: Optional[int] = None,
        offset: int = 0,
        table: Optional[str] = None,
    ) -> list[T]:
        """List entities matching an optional SQL condition, in row order."""
        table = table or self.table_name
        sql = self._select(table)
        if where:
            sql += f" WHERE {where}"
        sql += f" ORDER BY {table}.id"
        if limit is not None:
            sql += f" LIMIT {int(limit)} OFFSET {int(offset)}"
        return [self._to_model(row) for row in self.db.fetch_all(sql + ";", params)]
