from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence, TypeVar


ModelT = TypeVar("ModelT")

# Equality filters by column name; list/tuple/set values mean "in".
Filters = Mapping[str, Any]


class Repository(Protocol[ModelT]):
    # Generic storage contract shared by every entity kind; the core never issues raw queries.
    async def find_by_id(self, record_id: str) -> ModelT | None: ...

    async def find_many(
        self,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[ModelT]: ...

    async def create(self, data: Mapping[str, Any]) -> ModelT: ...

    async def create_if_absent(self, data: Mapping[str, Any], *, unique_on: Sequence[str]) -> ModelT | None:
        # Insert unless a row with the same unique_on values exists; None means nothing was inserted.
        ...

    async def update(self, record_id: str, data: Mapping[str, Any]) -> ModelT | None: ...

    async def update_where(self, filters: Filters, data: Mapping[str, Any]) -> int: ...

    async def delete(self, record_id: str) -> bool: ...

    async def delete_where(self, filters: Filters) -> int:
        # Conditional delete; the returned row count is the only source of truth for "was present".
        ...

    async def count(self, filters: Filters | None = None) -> int: ...
