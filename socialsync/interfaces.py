"""Protocol interfaces for dependency injection.

Every view takes its backend as a constructor argument typed with these
protocols, so tests can hand in an in-memory fake and callers can swap in any
client that speaks the same surface.

Example:
    >>> from socialsync.interfaces import IBackendClient
    >>> from socialsync.backend import AsyncBackendClient
    >>> isinstance(AsyncBackendClient(), IBackendClient)
    True
"""

from typing import Any, Protocol, runtime_checkable

from socialsync.models import ChangePayload, Session
from socialsync.query import QueryResult, TableQuery


@runtime_checkable
class IRealtimeChannel(Protocol):
    """A joined (or joinable) change-feed topic."""

    topic: str

    def on_postgres_changes(
        self,
        event: str,
        table: str,
        callback: Any,
        schema: str = "public",
        filter: str | None = None,
    ) -> "IRealtimeChannel":
        """Register a callback for row changes on a table."""
        ...

    async def subscribe(self) -> "IRealtimeChannel":
        ...

    async def unsubscribe(self) -> None:
        ...

    async def dispatch(self, message: dict[str, Any]) -> int:
        ...


@runtime_checkable
class IRealtimeClient(Protocol):
    """Realtime connection interface."""

    def channel(self, topic: str) -> IRealtimeChannel:
        """Get or create a channel for ``topic``."""
        ...

    async def remove_channel(self, channel: IRealtimeChannel) -> None:
        """Leave a channel and drop it."""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class IBackendClient(Protocol):
    """Hosted backend interface.

    Implementations should handle:
    - Authentication headers
    - Retry of idempotent reads
    - Connection pooling

    Errors:
        BackendError for permanent failures, TransientBackendError when
        retries are exhausted, NotAuthenticatedError from ``require_user``.
    """

    @property
    def current_user_id(self) -> str | None:
        """ID of the signed-in viewer, None when anonymous."""
        ...

    @property
    def session(self) -> Session | None:
        ...

    def require_user(self) -> str:
        """Viewer ID, or raise NotAuthenticatedError."""
        ...

    def table(self, name: str) -> TableQuery:
        """Start a request against a table."""
        ...

    async def execute(self, query: TableQuery) -> QueryResult:
        """Run a table request and return rows plus optional count."""
        ...

    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        content_type: str,
        upsert: bool = True,
        cache_control: str = "3600",
    ) -> str:
        """Store an object and return its key."""
        ...

    def public_url(self, bucket: str, path: str) -> str:
        ...

    def realtime(self) -> IRealtimeClient:
        ...

    async def close(self) -> None:
        ...


ChangeHandler = Any
"""Callable receiving a :class:`ChangePayload`; may be sync or async."""

__all__ = [
    "IBackendClient",
    "IRealtimeClient",
    "IRealtimeChannel",
    "ChangePayload",
]
