"""Table query builder shared by every data backend.

Queries read like the hosted backend's client library:

    rows = await backend.table("clients").select("*").eq("user_id", uid) \\
        .order("created_at", desc=True).execute()

    row = await backend.table("people").insert(data).select("*").single().execute()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from mortgagepro.types import Row

if TYPE_CHECKING:
    from mortgagepro.backends.base import DataBackend

Action = Literal["select", "insert", "update", "delete"]
Operator = Literal["eq", "neq", "gt", "gte", "lt", "lte", "in", "ilike", "is"]


@dataclass(frozen=True, slots=True)
class Filter:
    """A single column predicate."""

    column: str
    op: Operator
    value: Any


@dataclass(frozen=True, slots=True)
class AnyOf:
    """Matches when any of its filters match."""

    filters: tuple[Filter, ...]


class TableQuery:
    """A select/insert/update/delete against one table."""

    def __init__(self, backend: DataBackend, table: str) -> None:
        self._backend = backend
        self.table = table
        self.action: Action = "select"
        self.columns = "*"
        self.values: list[Row] = []
        self.filters: list[Filter | AnyOf] = []
        self.orders: list[tuple[str, bool]] = []  # (column, descending)
        self.row_limit: int | None = None
        self.is_single = False
        self.returning = False

    # Actions

    def select(self, columns: str = "*") -> TableQuery:
        """Choose columns; after insert/update/delete, return the written rows."""
        self.columns = columns
        if self.action != "select":
            self.returning = True
        return self

    def insert(self, rows: Row | list[Row]) -> TableQuery:
        self.action = "insert"
        self.values = [dict(rows)] if isinstance(rows, dict) else [dict(r) for r in rows]
        return self

    def update(self, values: Row) -> TableQuery:
        self.action = "update"
        self.values = [dict(values)]
        return self

    def delete(self) -> TableQuery:
        self.action = "delete"
        return self

    # Filters

    def eq(self, column: str, value: Any) -> TableQuery:
        return self._where(column, "eq", value)

    def neq(self, column: str, value: Any) -> TableQuery:
        return self._where(column, "neq", value)

    def gt(self, column: str, value: Any) -> TableQuery:
        return self._where(column, "gt", value)

    def gte(self, column: str, value: Any) -> TableQuery:
        return self._where(column, "gte", value)

    def lt(self, column: str, value: Any) -> TableQuery:
        return self._where(column, "lt", value)

    def lte(self, column: str, value: Any) -> TableQuery:
        return self._where(column, "lte", value)

    def in_(self, column: str, values: list[Any] | tuple[Any, ...]) -> TableQuery:
        return self._where(column, "in", tuple(values))

    def ilike(self, column: str, pattern: str) -> TableQuery:
        return self._where(column, "ilike", pattern)

    def is_(self, column: str, value: bool | None) -> TableQuery:
        return self._where(column, "is", value)

    def or_(self, *filters: tuple[str, Operator, Any]) -> TableQuery:
        """Match rows satisfying any (column, operator, value) triple."""
        self.filters.append(AnyOf(tuple(Filter(c, op, v) for c, op, v in filters)))
        return self

    # Shaping

    def order(self, column: str, *, desc: bool = False) -> TableQuery:
        self.orders.append((column, desc))
        return self

    def limit(self, count: int) -> TableQuery:
        self.row_limit = count
        return self

    def single(self) -> TableQuery:
        """Expect exactly one row and return it as a dict."""
        self.is_single = True
        return self

    async def execute(self) -> Any:
        """Run the query on its backend."""
        return await self._backend.execute(self)

    def _where(self, column: str, op: Operator, value: Any) -> TableQuery:
        self.filters.append(Filter(column, op, value))
        return self

    def __repr__(self) -> str:
        return f"TableQuery({self.action} {self.table}, filters={len(self.filters)})"


__all__ = ["Action", "AnyOf", "Filter", "Operator", "TableQuery"]
