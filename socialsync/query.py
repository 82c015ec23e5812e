"""Table request builder for the backend's REST table API.

A :class:`TableQuery` is a plain description of one request against one table:
what to do (select/insert/update/upsert/delete), which rows (filters), in
which order and how many. The backend client renders it to HTTP; the test
suite evaluates the very same object against in-memory tables.

Rendering follows the PostgREST conventions:

    posts?select=*&order=created_at.desc&offset=10&limit=10
    profiles?user_id=in.("u1","u2")
    profiles?or=(name.ilike.%ada%,username.ilike.%ada%)

Example:
    >>> query = (
    ...     TableQuery("posts")
    ...     .select("*")
    ...     .order("created_at", ascending=False)
    ...     .range(0, 9)
    ... )
    >>> query.method
    'GET'
    >>> query.to_params()
    [('select', '*'), ('order', 'created_at.desc'), ('offset', '0'), ('limit', '10')]
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from socialsync.errors import BackendError

Action = Literal["select", "insert", "update", "upsert", "delete"]
Cardinality = Literal["single", "maybe_single"]

FILTER_OPS = ("eq", "neq", "in", "ilike", "is")

# Characters that must be double-quoted inside in() lists and or() groups
_RESERVED = set(',.:()" \t\n')


def _format_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote(value: Any) -> str:
    text = _format_scalar(value)
    if any(ch in _RESERVED for ch in text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


@dataclass(frozen=True)
class Filter:
    """A single column predicate.

    Attributes:
        column: Column name
        op: One of ``eq``, ``neq``, ``in``, ``ilike``, ``is``
        value: Scalar, or a sequence for ``in``; ``ilike`` patterns use ``%``
    """

    column: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def render_value(self, quoted: bool = False) -> str:
        """Render the ``op.value`` half of the predicate."""
        if self.op == "in":
            items = ",".join(_quote(v) for v in self.value)
            return f"in.({items})"
        text = _quote(self.value) if quoted else _format_scalar(self.value)
        return f"{self.op}.{text}"

    def render(self) -> str:
        """Render as ``column.op.value`` for use inside an or() group."""
        return f"{self.column}.{self.render_value(quoted=True)}"


@dataclass
class QueryResult:
    """Rows (and optional exact count) returned for one request."""

    data: list[dict[str, Any]] = field(default_factory=list)
    count: int | None = None

    def first(self) -> dict[str, Any] | None:
        """Get the first row or None."""
        return self.data[0] if self.data else None

    def __len__(self) -> int:
        return len(self.data)


@dataclass
class TableQuery:
    """Chainable description of a table request.

    Builder methods mutate and return ``self`` so calls read like the
    backend's own client libraries.
    """

    table: str
    action: Action = "select"
    columns: str = "*"
    count_mode: str | None = None
    head: bool = False
    filters: list[Filter] = field(default_factory=list)
    or_groups: list[tuple[Filter, ...]] = field(default_factory=list)
    orders: list[tuple[str, bool]] = field(default_factory=list)
    offset: int | None = None
    row_limit: int | None = None
    cardinality: Cardinality | None = None
    payload: Any = None
    returning: bool = True
    on_conflict: str | None = None
    ignore_duplicates: bool = False

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def select(
        self,
        columns: str = "*",
        count: str | None = None,
        head: bool = False,
    ) -> "TableQuery":
        """Read rows. ``count="exact"`` requests a total; ``head`` skips rows."""
        self.action = "select"
        self.columns = columns
        self.count_mode = count
        self.head = head
        return self

    def insert(
        self,
        rows: Mapping[str, Any] | Iterable[Mapping[str, Any]],
        returning: bool = True,
    ) -> "TableQuery":
        """Insert one row or a batch."""
        self.action = "insert"
        self.payload = _rows(rows)
        self.returning = returning
        return self

    def upsert(
        self,
        rows: Mapping[str, Any] | Iterable[Mapping[str, Any]],
        on_conflict: str | None = None,
        ignore_duplicates: bool = False,
        returning: bool = True,
    ) -> "TableQuery":
        """Insert or merge on the conflict target."""
        self.action = "upsert"
        self.payload = _rows(rows)
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        self.returning = returning
        return self

    def update(self, values: Mapping[str, Any], returning: bool = True) -> "TableQuery":
        """Update the rows matched by the filters."""
        self.action = "update"
        self.payload = dict(values)
        self.returning = returning
        return self

    def delete(self, returning: bool = False) -> "TableQuery":
        """Delete the rows matched by the filters."""
        self.action = "delete"
        self.returning = returning
        return self

    # ------------------------------------------------------------------
    # Filters and modifiers
    # ------------------------------------------------------------------

    def eq(self, column: str, value: Any) -> "TableQuery":
        self.filters.append(Filter(column, "eq", value))
        return self

    def neq(self, column: str, value: Any) -> "TableQuery":
        self.filters.append(Filter(column, "neq", value))
        return self

    def in_(self, column: str, values: Iterable[Any]) -> "TableQuery":
        self.filters.append(Filter(column, "in", tuple(values)))
        return self

    def ilike(self, column: str, pattern: str) -> "TableQuery":
        self.filters.append(Filter(column, "ilike", pattern))
        return self

    def is_(self, column: str, value: bool | None) -> "TableQuery":
        self.filters.append(Filter(column, "is", value))
        return self

    def or_(self, *filters: Filter) -> "TableQuery":
        """Match rows satisfying any of ``filters``."""
        if not filters:
            raise ValueError("or_() needs at least one filter")
        self.or_groups.append(tuple(filters))
        return self

    def order(self, column: str, ascending: bool = True) -> "TableQuery":
        self.orders.append((column, ascending))
        return self

    def range(self, start: int, end: int) -> "TableQuery":
        """Limit to rows ``start``..``end`` inclusive (zero-based)."""
        if start < 0 or end < start:
            raise ValueError(f"Invalid range: {start}-{end}")
        self.offset = start
        self.row_limit = end - start + 1
        return self

    def limit(self, count: int) -> "TableQuery":
        self.row_limit = count
        return self

    def single(self) -> "TableQuery":
        """Expect exactly one row."""
        self.cardinality = "single"
        return self

    def maybe_single(self) -> "TableQuery":
        """Expect zero or one row."""
        self.cardinality = "maybe_single"
        return self

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    @property
    def method(self) -> str:
        """HTTP method for this request."""
        if self.action == "select":
            return "HEAD" if self.head else "GET"
        return {
            "insert": "POST",
            "upsert": "POST",
            "update": "PATCH",
            "delete": "DELETE",
        }[self.action]

    @property
    def is_read(self) -> bool:
        """True for idempotent requests that may be retried."""
        return self.action == "select"

    @property
    def matches_nothing(self) -> bool:
        """True when an empty ``in`` list makes the result trivially empty."""
        return any(f.op == "in" and not f.value for f in self.filters)

    def to_params(self) -> list[tuple[str, str]]:
        """Render query-string parameters (order preserved, keys may repeat)."""
        params: list[tuple[str, str]] = []
        if self.action == "select":
            params.append(("select", self.columns))
        elif self.returning and self.action != "delete":
            params.append(("select", "*"))
        if self.action == "upsert" and self.on_conflict:
            params.append(("on_conflict", self.on_conflict))
        for flt in self.filters:
            params.append((flt.column, flt.render_value()))
        for group in self.or_groups:
            params.append(("or", "(" + ",".join(f.render() for f in group) + ")"))
        if self.orders:
            params.append((
                "order",
                ",".join(f"{col}.{'asc' if asc else 'desc'}" for col, asc in self.orders),
            ))
        if self.offset is not None:
            params.append(("offset", str(self.offset)))
        if self.row_limit is not None:
            params.append(("limit", str(self.row_limit)))
        return params

    def to_headers(self) -> dict[str, str]:
        """Render ``Prefer`` headers for counts, returns and conflicts."""
        prefer: list[str] = []
        if self.count_mode:
            prefer.append(f"count={self.count_mode}")
        if self.action in ("insert", "upsert", "update", "delete"):
            prefer.append("return=representation" if self.returning else "return=minimal")
        if self.action == "upsert":
            prefer.append(
                "resolution=ignore-duplicates"
                if self.ignore_duplicates
                else "resolution=merge-duplicates"
            )
        return {"Prefer": ",".join(prefer)} if prefer else {}

    def body(self) -> Any:
        """JSON body for mutations, None for reads and deletes."""
        if self.action in ("insert", "upsert", "update"):
            return self.payload
        return None

    def check_cardinality(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Enforce ``single``/``maybe_single`` expectations on returned rows.

        Raises:
            BackendError: If the row count does not match the expectation
        """
        if self.cardinality == "single" and len(rows) != 1:
            raise BackendError(
                f"Expected exactly one row from {self.table}, got {len(rows)}",
                status=406,
                code="PGRST116",
            )
        if self.cardinality == "maybe_single" and len(rows) > 1:
            raise BackendError(
                f"Expected at most one row from {self.table}, got {len(rows)}",
                status=406,
                code="PGRST116",
            )
        return rows

    def describe(self) -> str:
        """Short label for logs and metrics."""
        return f"{self.action} {self.table}"


def _rows(rows: Mapping[str, Any] | Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    if isinstance(rows, Mapping):
        return [dict(rows)]
    return [dict(row) for row in rows]


def parse_content_range(header: str | None) -> int | None:
    """Extract the total from a ``Content-Range`` header (``0-9/42``, ``*/0``).

    Example:
        >>> parse_content_range("0-9/42")
        42
        >>> parse_content_range("*/*") is None
        True
    """
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else None


__all__ = [
    "Filter",
    "QueryResult",
    "TableQuery",
    "parse_content_range",
]
