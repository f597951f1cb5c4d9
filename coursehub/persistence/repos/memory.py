from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Generic, Mapping, Sequence
from uuid import uuid4

from coursehub.persistence.repos.base import Filters, ModelT


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _column_defaults(model: type) -> dict[str, Any]:
    # Resolve Python-side column defaults, which transient ORM objects never receive without a flush.
    defaults: dict[str, Any] = {}
    for column in model.__table__.columns:
        default = column.default
        if default is None:
            continue
        if default.is_callable:
            defaults[column.key] = default.arg(None)
        elif default.is_scalar:
            defaults[column.key] = default.arg
    return defaults


def _matches(row: Any, filters: Filters | None) -> bool:
    for name, expected in (filters or {}).items():
        value = getattr(row, name)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class InMemoryRepository(Generic[ModelT]):
    """Process-local repository for tests and local development.

    Each operation yields to the event loop once before it runs, so concurrent
    callers interleave the way they would against a real store, but the
    operation body itself never suspends: a conditional insert or delete is
    atomic with respect to every other coroutine.
    """

    def __init__(self, model: type[ModelT], *, yield_control: bool = True) -> None:
        self._model = model
        self._rows: dict[str, ModelT] = {}
        self._yield_control = yield_control

    async def _checkpoint(self) -> None:
        if self._yield_control:
            await asyncio.sleep(0)

    def _build(self, data: Mapping[str, Any]) -> ModelT:
        values = {**_column_defaults(self._model), **dict(data)}
        if not values.get("id"):
            values["id"] = uuid4().hex
        return self._model(**values)

    def _select(self, filters: Filters | None) -> list[ModelT]:
        return [row for row in self._rows.values() if _matches(row, filters)]

    def _touch(self, row: ModelT) -> None:
        if "updated_at" in self._model.__table__.columns:
            setattr(row, "updated_at", _utc_now())

    async def find_by_id(self, record_id: str) -> ModelT | None:
        await self._checkpoint()
        return self._rows.get(record_id)

    async def find_many(
        self,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[ModelT]:
        await self._checkpoint()
        rows = sorted(self._select(filters), key=lambda row: row.id)
        if order_by:
            rows.sort(key=lambda row: getattr(row, order_by), reverse=descending)
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def create(self, data: Mapping[str, Any]) -> ModelT:
        await self._checkpoint()
        row = self._build(data)
        self._rows[row.id] = row
        return row

    async def create_if_absent(self, data: Mapping[str, Any], *, unique_on: Sequence[str]) -> ModelT | None:
        await self._checkpoint()
        key = {name: data.get(name) for name in unique_on}
        if self._select(key):
            return None
        row = self._build(data)
        self._rows[row.id] = row
        return row

    async def update(self, record_id: str, data: Mapping[str, Any]) -> ModelT | None:
        await self._checkpoint()
        row = self._rows.get(record_id)
        if row is None:
            return None
        for name, value in data.items():
            setattr(row, name, value)
        self._touch(row)
        return row

    async def update_where(self, filters: Filters, data: Mapping[str, Any]) -> int:
        await self._checkpoint()
        rows = self._select(filters)
        for row in rows:
            for name, value in data.items():
                setattr(row, name, value)
            self._touch(row)
        return len(rows)

    async def delete(self, record_id: str) -> bool:
        await self._checkpoint()
        return self._rows.pop(record_id, None) is not None

    async def delete_where(self, filters: Filters) -> int:
        await self._checkpoint()
        rows = self._select(filters)
        for row in rows:
            self._rows.pop(row.id, None)
        return len(rows)

    async def count(self, filters: Filters | None = None) -> int:
        await self._checkpoint()
        return len(self._select(filters))
