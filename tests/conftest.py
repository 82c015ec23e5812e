"""Pytest configuration and shared fixtures for socialsync tests."""

import asyncio
import itertools
import os
import re
import sys
import tempfile
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any

# Settings are read when socialsync is imported
os.environ["SOCIALSYNC_BACKEND_URL"] = "https://project.example.co"
os.environ["SOCIALSYNC_ANON_KEY"] = "test-anon-key-0123456789abcdef"
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="socialsync-tests-")
os.environ.pop("SOCIALSYNC_ACCESS_TOKEN", None)

import pytest
from loguru import logger

from socialsync.errors import NotAuthenticatedError
from socialsync.models import AuthUser, Session
from socialsync.query import Filter, QueryResult, TableQuery
from socialsync.realtime import RealtimeClient

BASE_TIME = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Test Configuration
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_loguru():
    """Reset loguru handlers before each test to prevent I/O errors."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
    )
    yield
    logger.remove()


# =============================================================================
# In-memory backend
# =============================================================================


def _like(value: Any, pattern: str) -> bool:
    if value is None:
        return False
    regex = "^" + ".*".join(re.escape(part) for part in pattern.split("%")) + "$"
    return re.match(regex, str(value), re.IGNORECASE | re.DOTALL) is not None


def _matches(row: dict[str, Any], flt: Filter) -> bool:
    value = row.get(flt.column)
    if flt.op == "eq":
        return value == flt.value
    if flt.op == "neq":
        return value != flt.value
    if flt.op == "in":
        return value in flt.value
    if flt.op == "ilike":
        return _like(value, flt.value)
    if flt.op == "is":
        return value is flt.value
    raise AssertionError(f"unhandled operator {flt.op}")


class FakeRealtime(RealtimeClient):
    """Realtime client that records frames instead of opening a socket."""

    def __init__(self) -> None:
        super().__init__(url="ws://fake/realtime/v1/websocket", api_key="anon", heartbeat_seconds=30)
        self.frames: list[tuple[str, str, dict[str, Any]]] = []
        self.is_open = False

    @property
    def connected(self) -> bool:
        return self.is_open

    async def connect(self) -> None:
        self.is_open = True

    async def push(self, topic: str, event: str, payload: dict[str, Any]) -> str:
        self.frames.append((topic, event, payload))
        return str(len(self.frames))

    async def close(self) -> None:
        self.is_open = False


class FakeBackend:
    """Evaluates TableQuery objects against in-memory tables.

    Every ``execute`` yields to the loop once, so concurrent callers interleave
    the way they would against the network.
    """

    def __init__(self, user_id: str | None = "user-1") -> None:
        self.user_id = user_id
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.calls: list[TableQuery] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self.uploads: list[dict[str, Any]] = []
        self.realtime_client = FakeRealtime()
        self.closed = False
        self._ids = itertools.count(1)
        self._ticks = itertools.count(1)

    # --- test helpers -------------------------------------------------------

    def seed(self, table: str, **row: Any) -> dict[str, Any]:
        """Insert a row directly, filling id and created_at."""
        row = dict(row)
        row.setdefault("id", f"{table}-{next(self._ids)}")
        row.setdefault("created_at", self._now())
        self.tables[table].append(row)
        return row

    def fail_on(self, table: str, action: str, error: Exception) -> None:
        self.failures[(table, action)] = error

    def calls_to(self, table: str, action: str | None = None) -> list[TableQuery]:
        return [q for q in self.calls if q.table == table and (action is None or q.action == action)]

    def _now(self) -> str:
        return (BASE_TIME + timedelta(seconds=next(self._ticks))).isoformat()

    # --- IBackendClient -----------------------------------------------------

    @property
    def current_user_id(self) -> str | None:
        return self.user_id

    @property
    def session(self) -> Session | None:
        if not self.user_id:
            return None
        return Session(access_token="fake-token", user=AuthUser(id=self.user_id))

    def require_user(self) -> str:
        if not self.user_id:
            raise NotAuthenticatedError()
        return self.user_id

    async def get_user(self) -> AuthUser:
        return AuthUser(id=self.require_user(), email=f"{self.user_id}@example.com")

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        self.user_id = email.split("@")[0]
        return self.session

    def table(self, name: str) -> TableQuery:
        return TableQuery(name)

    async def execute(self, query: TableQuery) -> QueryResult:
        await asyncio.sleep(0)
        self.calls.append(query)
        error = self.failures.get((query.table, query.action))
        if error is not None:
            raise error
        return getattr(self, f"_{query.action}")(query)

    def _filtered(self, query: TableQuery) -> list[dict[str, Any]]:
        return [
            row
            for row in self.tables[query.table]
            if all(_matches(row, f) for f in query.filters)
            and all(any(_matches(row, f) for f in group) for group in query.or_groups)
        ]

    def _select(self, query: TableQuery) -> QueryResult:
        rows = self._filtered(query)
        for column, ascending in reversed(query.orders):
            rows.sort(
                key=lambda r: (r.get(column) is None, r.get(column) or ""),
                reverse=not ascending,
            )
        count = len(rows) if query.count_mode else None
        start = query.offset or 0
        end = start + query.row_limit if query.row_limit is not None else None
        data = [] if query.head else [dict(r) for r in rows[start:end]]
        return QueryResult(data=query.check_cardinality(data), count=count)

    def _insert(self, query: TableQuery) -> QueryResult:
        created = []
        for values in query.payload:
            row = dict(values)
            row.setdefault("id", f"{query.table}-{next(self._ids)}")
            row.setdefault("created_at", self._now())
            self.tables[query.table].append(row)
            created.append(dict(row))
        data = created if query.returning else []
        return QueryResult(data=query.check_cardinality(data) if query.returning else data)

    def _upsert(self, query: TableQuery) -> QueryResult:
        keys = (query.on_conflict or "id").split(",")
        stored = []
        for values in query.payload:
            existing = next(
                (
                    r
                    for r in self.tables[query.table]
                    if all(k in values and r.get(k) == values[k] for k in keys)
                ),
                None,
            )
            if existing is None:
                row = dict(values)
                row.setdefault("id", f"{query.table}-{next(self._ids)}")
                row.setdefault("created_at", self._now())
                self.tables[query.table].append(row)
                stored.append(dict(row))
            elif not query.ignore_duplicates:
                existing.update(values)
                stored.append(dict(existing))
        return QueryResult(data=stored if query.returning else [])

    def _update(self, query: TableQuery) -> QueryResult:
        rows = self._filtered(query)
        for row in rows:
            row.update(query.payload)
        data = [dict(r) for r in rows] if query.returning else []
        return QueryResult(data=query.check_cardinality(data) if query.returning else data)

    def _delete(self, query: TableQuery) -> QueryResult:
        doomed = self._filtered(query)
        self.tables[query.table] = [r for r in self.tables[query.table] if r not in doomed]
        return QueryResult(data=[dict(r) for r in doomed] if query.returning else [])

    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        content_type: str,
        upsert: bool = True,
        cache_control: str = "3600",
    ) -> str:
        await asyncio.sleep(0)
        error = self.failures.get((bucket, "upload"))
        if error is not None:
            raise error
        self.uploads.append(
            {
                "bucket": bucket,
                "path": path,
                "size": len(content),
                "content_type": content_type,
                "upsert": upsert,
                "cache_control": cache_control,
            }
        )
        return f"{bucket}/{path}"

    def public_url(self, bucket: str, path: str) -> str:
        return f"https://project.example.co/storage/v1/object/public/{bucket}/{path}"

    def realtime(self) -> FakeRealtime:
        return self.realtime_client

    async def close(self) -> None:
        self.closed = True


def change_message(topic: str, table: str, event: str, record: dict[str, Any]) -> dict[str, Any]:
    """A ``postgres_changes`` frame as the realtime server sends it."""
    return {
        "topic": f"realtime:{topic}",
        "event": "postgres_changes",
        "payload": {
            "data": {
                "schema": "public",
                "table": table,
                "type": event,
                "record": record,
                "old_record": {},
                "commit_timestamp": "2024-01-15T12:00:00Z",
            }
        },
        "ref": None,
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def backend() -> FakeBackend:
    """Fake backend signed in as ``user-1``."""
    return FakeBackend(user_id="user-1")


@pytest.fixture
def anon_backend() -> FakeBackend:
    """Fake backend with nobody signed in."""
    return FakeBackend(user_id=None)


@pytest.fixture
def make_change():
    return change_message


@pytest.fixture
def social_graph(backend: FakeBackend) -> FakeBackend:
    """Three users with posts, likes and comments.

    - user-1 (ada) wrote post A; user-2 (bob) wrote post B; user-3 has no profile
      and wrote post C
    - post A liked by user-2 and user-1; post B liked by user-2
    - post A has two comments
    """
    backend.seed("profiles", user_id="user-1", username="ada", name="Ada Lovelace", bio="Analytical engines")
    backend.seed("profiles", user_id="user-2", username="bob", name="Bob Builder", bio="Can we fix it")

    backend.seed("posts", id="post-a", user_id="user-1", content="Hello #Python")
    backend.seed("posts", id="post-b", user_id="user-2", content="Building things #diy")
    backend.seed("posts", id="post-c", user_id="user-3", content="Ghost post")

    backend.seed("post_likes", post_id="post-a", user_id="user-2")
    backend.seed("post_likes", post_id="post-a", user_id="user-1")
    backend.seed("post_likes", post_id="post-b", user_id="user-2")

    backend.seed("post_comments", id="c1", post_id="post-a", user_id="user-2", content="Nice")
    backend.seed(
        "post_comments", id="c2", post_id="post-a", user_id="user-1", content="Thanks", parent_comment_id="c1"
    )
    return backend
