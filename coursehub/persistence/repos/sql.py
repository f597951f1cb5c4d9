from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator, Generic, Mapping, Sequence
from uuid import uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursehub.core.errors import DatabaseError
from coursehub.persistence.repos.base import Filters, ModelT


logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class SqlRepository(Generic[ModelT]):
    # Async SQLAlchemy adapter for the generic repository contract; one short session per call.
    def __init__(self, model: type[ModelT], session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._model = model
        self._session_factory = session_factory
        self._table = model.__tablename__

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        # Translate driver errors into the transient dependency taxonomy at the repository boundary.
        async with self._session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.warning("repository_failed table=%s operation=%s", self._table, operation, exc_info=exc)
                raise DatabaseError(f"{self._table} {operation} failed") from exc

    def _conditions(self, filters: Filters | None) -> list[Any]:
        conditions: list[Any] = []
        for name, value in (filters or {}).items():
            column = getattr(self._model, name)
            if isinstance(value, (list, tuple, set, frozenset)):
                conditions.append(column.in_(list(value)))
            elif value is None:
                conditions.append(column.is_(None))
            else:
                conditions.append(column == value)
        return conditions

    def _with_id(self, data: Mapping[str, Any]) -> dict[str, Any]:
        values = dict(data)
        if not values.get("id"):
            values["id"] = uuid4().hex
        return values

    async def find_by_id(self, record_id: str) -> ModelT | None:
        async with self._session("find_by_id") as session:
            return await session.get(self._model, record_id)

    async def find_many(
        self,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[ModelT]:
        stmt = select(self._model).where(*self._conditions(filters))
        if order_by:
            column = getattr(self._model, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        # Stable tie-breaker keeps pages deterministic.
        stmt = stmt.order_by(self._model.id)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session("find_many") as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def create(self, data: Mapping[str, Any]) -> ModelT:
        row = self._model(**self._with_id(data))
        async with self._session("create") as session:
            session.add(row)
            await session.commit()
        return row

    async def create_if_absent(self, data: Mapping[str, Any], *, unique_on: Sequence[str]) -> ModelT | None:
        # Single conditional insert against the unique index; never a read followed by a write.
        values = self._with_id(data)
        async with self._session("create_if_absent") as session:
            insert_fn = _UPSERT_INSERTS.get(session.bind.dialect.name)
            if insert_fn is None:
                return await self._create_or_conflict(session, values)
            stmt = insert_fn(self._model).values(**values).on_conflict_do_nothing(
                index_elements=list(unique_on)
            )
            result = await session.execute(stmt)
            await session.commit()
            if not result.rowcount:
                return None
            return await session.get(self._model, values["id"])

    async def _create_or_conflict(self, session: AsyncSession, values: dict[str, Any]) -> ModelT | None:
        # Dialects without ON CONFLICT still rely on the unique index via IntegrityError.
        row = self._model(**values)
        session.add(row)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            return None
        return row

    async def update(self, record_id: str, data: Mapping[str, Any]) -> ModelT | None:
        async with self._session("update") as session:
            row = await session.get(self._model, record_id)
            if row is None:
                return None
            for name, value in data.items():
                setattr(row, name, value)
            await session.commit()
            return row

    async def update_where(self, filters: Filters, data: Mapping[str, Any]) -> int:
        stmt = (
            update(self._model)
            .where(*self._conditions(filters))
            .values(**dict(data))
            .execution_options(synchronize_session=False)
        )
        async with self._session("update_where") as session:
            result = await session.execute(stmt)
            await session.commit()
            return int(result.rowcount or 0)

    async def delete(self, record_id: str) -> bool:
        return await self.delete_where({"id": record_id}) > 0

    async def delete_where(self, filters: Filters) -> int:
        stmt = delete(self._model).where(*self._conditions(filters)).execution_options(
            synchronize_session=False
        )
        async with self._session("delete_where") as session:
            result = await session.execute(stmt)
            await session.commit()
            return int(result.rowcount or 0)

    async def count(self, filters: Filters | None = None) -> int:
        stmt = select(func.count()).select_from(self._model).where(*self._conditions(filters))
        async with self._session("count") as session:
            result = await session.execute(stmt)
            return int(result.scalar() or 0)
