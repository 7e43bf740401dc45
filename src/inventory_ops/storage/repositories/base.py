"""
Shared plumbing for the table repositories.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Generic, Iterable, Optional, Type, TypeVar

import asyncpg
from pydantic import BaseModel

from inventory_ops.storage.database import Database

ModelT = TypeVar("ModelT", bound=BaseModel)


def db_value(value: Any) -> Any:
    """Enums as their value, nested models as JSON-ready dicts."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


class BaseRepository(Generic[ModelT]):
    """
    One table, one model.

    Subclasses set ``table_name`` and ``model_class`` and write their own
    SQL; rows come back through _to_model / _to_models.
    """

    table_name: str
    model_class: Type[ModelT]

    def __init__(self, db: Database) -> None:
        self.db = db

    def _to_model(self, row: Optional[asyncpg.Record]) -> Optional[ModelT]:
        return None if row is None else self.model_class.model_validate(dict(row))

    def _to_models(self, rows: Iterable[asyncpg.Record]) -> list[ModelT]:
        return [self.model_class.model_validate(dict(row)) for row in rows]

    async def get_by_id(self, record_id: str) -> Optional[ModelT]:
        row = await self.db.fetchrow(f"SELECT * FROM {self.table_name} WHERE id = $1", record_id)
        return self._to_model(row)
