"""Generic repository pattern for typed table access.

This module provides a Generic Repository[T] binding one remote table to one
pydantic model, so views read and write typed rows instead of raw dicts.

Example:
    >>> from socialsync.repository import Repository
    >>> from socialsync.models import Profile, Post
    >>>
    >>> profiles = Repository[Profile](backend, "profiles", Profile)
    >>> posts = Repository[Post](backend, "posts", Post)
    >>>
    >>> # Type checker knows these return Profile | None
    >>> ada = await profiles.first_by(username="ada")
    >>>
    >>> # ...and this returns list[Post]
    >>> recent = await posts.find_by(user_id=ada.user_id, order_by="created_at", ascending=False)
"""

from collections.abc import Iterable, Mapping
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from socialsync.interfaces import IBackendClient
from socialsync.query import TableQuery

# =============================================================================
# Type Variables
# =============================================================================

T = TypeVar("T", bound=BaseModel)


# =============================================================================
# Generic Repository
# =============================================================================


class Repository(Generic[T]):
    """Typed CRUD access to one table.

    Type Parameter:
        T: Row model (Post, Profile, Follow, etc.)

    Args:
        backend: Backend client used to run requests
        table: Remote table name
        model: Pydantic model rows are validated into

    Example:
        >>> likes = Repository[PostLike](backend, "post_likes", PostLike)
        >>> await likes.create({"post_id": "p1", "user_id": "u1"})
        >>> await likes.count_where(post_id="p1")
        1
        >>> await likes.delete_where(post_id="p1", user_id="u1")
    """

    def __init__(self, backend: IBackendClient, table: str, model: type[T]):
        self.backend = backend
        self.table = table
        self.model = model

    def query(self) -> TableQuery:
        """Start a raw request against this table."""
        return self.backend.table(self.table)

    def _validate(self, rows: Iterable[Mapping[str, Any]]) -> list[T]:
        return [self.model.model_validate(row) for row in rows]

    @staticmethod
    def _apply_eq(query: TableQuery, filters: Mapping[str, Any]) -> TableQuery:
        for column, value in filters.items():
            if value is None:
                query.is_(column, None)
            else:
                query.eq(column, value)
        return query

    async def get(self, entity_id: str) -> T | None:
        """Get a row by primary key.

        Returns:
            Row instance or None if not found
        """
        result = await self.backend.execute(self.query().select("*").eq("id", entity_id).maybe_single())
        row = result.first()
        return self.model.model_validate(row) if row else None

    async def first_by(self, **filters: Any) -> T | None:
        """Get the first row matching all equality filters."""
        query = self._apply_eq(self.query().select("*"), filters).limit(1)
        result = await self.backend.execute(query)
        row = result.first()
        return self.model.model_validate(row) if row else None

    async def find_by(
        self,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
        **filters: Any,
    ) -> list[T]:
        """Find rows matching all equality filters.

        Args:
            order_by: Optional sort column
            ascending: Sort direction
            limit: Maximum number of rows
            **filters: ``column=value`` equality filters (None means IS NULL)

        Example:
            >>> comments = await repo.find_by(post_id="p1", order_by="created_at")
        """
        query = self._apply_eq(self.query().select("*"), filters)
        if order_by:
            query.order(order_by, ascending=ascending)
        if limit is not None:
            query.limit(limit)
        result = await self.backend.execute(query)
        return self._validate(result.data)

    async def find_in(
        self,
        column: str,
        values: Iterable[Any],
        order_by: str | None = None,
        ascending: bool = True,
        **filters: Any,
    ) -> list[T]:
        """Find rows whose ``column`` is one of ``values``.

        An empty ``values`` matches nothing.
        """
        query = self._apply_eq(self.query().select("*").in_(column, values), filters)
        if order_by:
            query.order(order_by, ascending=ascending)
        result = await self.backend.execute(query)
        return self._validate(result.data)

    async def create(self, values: Mapping[str, Any]) -> T:
        """Insert one row and return it as stored."""
        result = await self.backend.execute(self.query().insert(values).single())
        return self.model.model_validate(result.data[0])

    async def create_many(self, rows: Iterable[Mapping[str, Any]]) -> list[T]:
        """Insert several rows in one request."""
        rows = list(rows)
        if not rows:
            return []
        result = await self.backend.execute(self.query().insert(rows))
        return self._validate(result.data)

    async def update_where(self, values: Mapping[str, Any], **filters: Any) -> list[T]:
        """Update rows matching all equality filters.

        Raises:
            ValueError: If no filter is given (refuses a whole-table update)
        """
        if not filters:
            raise ValueError("update_where() requires at least one filter")
        query = self._apply_eq(self.query().update(values), filters)
        result = await self.backend.execute(query)
        return self._validate(result.data)

    async def delete_where(self, **filters: Any) -> None:
        """Delete rows matching all equality filters.

        Raises:
            ValueError: If no filter is given (refuses a whole-table delete)
        """
        if not filters:
            raise ValueError("delete_where() requires at least one filter")
        await self.backend.execute(self._apply_eq(self.query().delete(), filters))

    async def count_where(self, **filters: Any) -> int:
        """Exact count of rows matching all equality filters (no rows transferred)."""
        query = self._apply_eq(self.query().select("id", count="exact", head=True), filters)
        result = await self.backend.execute(query)
        return result.count or 0


__all__ = ["Repository"]
