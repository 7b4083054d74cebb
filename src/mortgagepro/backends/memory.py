"""In-memory data and storage backends (async only)."""

from __future__ import annotations

import asyncio
import copy
import re
import uuid
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any

from mortgagepro.backends.query import AnyOf, Filter, TableQuery
from mortgagepro.errors import BackendError, StorageError
from mortgagepro.types import Row


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _like_to_regex(pattern: str) -> re.Pattern[str]:
    parts = (re.escape(part) for part in pattern.split("%"))
    return re.compile("^" + ".*".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def _matches(row: Row, condition: Filter | AnyOf) -> bool:
    if isinstance(condition, AnyOf):
        return any(_matches(row, f) for f in condition.filters)

    value = row.get(condition.column)
    target = condition.value
    op = condition.op
    if op == "eq":
        return value == target
    if op == "neq":
        return value != target
    if op == "in":
        return value in target
    if op == "is":
        return value is target
    if op == "ilike":
        return value is not None and bool(_like_to_regex(target).match(str(value)))
    if value is None:
        return False
    if op == "gt":
        return value > target
    if op == "gte":
        return value >= target
    if op == "lt":
        return value < target
    if op == "lte":
        return value <= target
    raise ValueError(f"Unknown filter operator: {op}")


def _project(row: Row, columns: str) -> Row:
    if columns.strip() == "*":
        return copy.deepcopy(row)
    wanted = [c.strip() for c in columns.split(",") if c.strip()]
    return {c: copy.deepcopy(row.get(c)) for c in wanted}


class MemoryBackend:
    """Tables of dict rows held in memory.

    Rows get a uuid ``id`` and ``created_at``/``updated_at`` timestamps when
    inserted without them. Columns listed in ``unique`` reject duplicates with
    the Postgres unique-violation code, and ``fail_next`` queues an error for
    the next matching operation so tests can script backend failures.
    """

    def __init__(self, unique: dict[str, list[str]] | None = None) -> None:
        self._tables: dict[str, list[Row]] = defaultdict(list)
        self._unique = unique or {}
        self._failures: dict[tuple[str, str], deque[BaseException]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self.calls: list[tuple[str, str]] = []

    def table(self, name: str) -> TableQuery:
        """Start a query against a table."""
        return TableQuery(self, name)

    def seed(self, table: str, rows: list[Row]) -> list[Row]:
        """Insert rows directly, bypassing failure scripting and call logging."""
        stored = [self._prepare(table, dict(row)) for row in rows]
        self._tables[table].extend(stored)
        return copy.deepcopy(stored)

    def rows(self, table: str) -> list[Row]:
        """Return a copy of every row in a table."""
        return copy.deepcopy(self._tables.get(table, []))

    def fail_next(self, table: str, action: str, error: BaseException) -> None:
        """Make the next ``action`` on ``table`` raise ``error``."""
        self._failures[(table, action)].append(error)

    def calls_to(self, table: str, action: str | None = None) -> int:
        """Count executed operations on a table, optionally of one action."""
        return sum(
            1 for t, a in self.calls if t == table and (action is None or a == action)
        )

    async def execute(self, query: TableQuery) -> Any:
        """Run a built query against the in-memory tables."""
        async with self._lock:
            self.calls.append((query.table, query.action))
            pending = self._failures.get((query.table, query.action))
            if pending:
                raise pending.popleft()

            if query.action == "select":
                result = self._select(query)
            elif query.action == "insert":
                result = self._insert(query)
            elif query.action == "update":
                result = self._update(query)
            else:
                result = self._delete(query)

        if query.action != "select" and not query.returning:
            return []
        return self._finish(query, result)

    async def aclose(self) -> None:
        """Release connections (no-op for memory)."""
        pass

    def _where(self, query: TableQuery) -> list[Row]:
        return [
            row
            for row in self._tables.get(query.table, [])
            if all(_matches(row, f) for f in query.filters)
        ]

    def _select(self, query: TableQuery) -> list[Row]:
        rows = list(self._where(query))
        for column, desc in reversed(query.orders):
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=desc)
            rows = missing + present if desc else present + missing
        if query.row_limit is not None:
            rows = rows[: query.row_limit]
        return rows

    def _insert(self, query: TableQuery) -> list[Row]:
        table = self._tables[query.table]
        prepared = [self._prepare(query.table, dict(values)) for values in query.values]
        for column in self._unique.get(query.table, []):
            seen = {row.get(column) for row in table if row.get(column) is not None}
            for row in prepared:
                value = row.get(column)
                if value is not None and value in seen:
                    raise BackendError(
                        f'duplicate key value violates unique constraint "{query.table}_{column}_key"',
                        code="23505",
                        details=f"Key ({column})=({value}) already exists.",
                        status_code=409,
                    )
                seen.add(value)
        table.extend(prepared)
        return prepared

    def _update(self, query: TableQuery) -> list[Row]:
        values = query.values[0] if query.values else {}
        updated = self._where(query)
        for row in updated:
            row.update(copy.deepcopy(values))
            if "updated_at" not in values:
                row["updated_at"] = _now_iso()
        return updated

    def _delete(self, query: TableQuery) -> list[Row]:
        doomed = self._where(query)
        ids = {id(row) for row in doomed}
        self._tables[query.table] = [
            row for row in self._tables.get(query.table, []) if id(row) not in ids
        ]
        return doomed

    def _prepare(self, table: str, row: Row) -> Row:
        now = _now_iso()
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", now)
        row.setdefault("updated_at", now)
        return row

    def _finish(self, query: TableQuery, rows: list[Row]) -> Any:
        projected = [_project(row, query.columns) for row in rows]
        if query.is_single:
            if len(projected) != 1:
                raise BackendError(
                    "JSON object requested, multiple (or no) rows returned",
                    code="PGRST116",
                    details=f"The result contains {len(projected)} rows",
                    status_code=406,
                )
            return projected[0]
        return projected


class MemoryStorage:
    """Object storage held in memory, keyed by (bucket, path)."""

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self._failures: dict[str, deque[BaseException]] = defaultdict(deque)

    def fail_next(self, action: str, error: BaseException) -> None:
        """Make the next ``action`` (upload/sign/download/remove) raise."""
        self._failures[action].append(error)

    def paths(self, bucket: str) -> list[str]:
        """Return every stored path in a bucket."""
        return sorted(path for b, path in self._objects if b == bucket)

    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        *,
        content_type: str = "application/octet-stream",
        upsert: bool = False,
    ) -> str:
        """Store a file and return its path."""
        self._maybe_fail("upload")
        if not upsert and (bucket, path) in self._objects:
            raise StorageError("The resource already exists", code="409", status_code=409)
        self._objects[(bucket, path)] = (bytes(content), content_type)
        return path

    async def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        """Return a temporary URL for a stored file."""
        self._maybe_fail("sign")
        if (bucket, path) not in self._objects:
            raise StorageError("Object not found", code="404", status_code=404)
        return f"memory://{bucket}/{path}?token={uuid.uuid4().hex}&expires_in={expires_in}"

    async def download(self, bucket: str, path: str) -> bytes:
        """Return the bytes of a stored file."""
        self._maybe_fail("download")
        try:
            return self._objects[(bucket, path)][0]
        except KeyError:
            raise StorageError("Object not found", code="404", status_code=404) from None

    async def remove(self, bucket: str, paths: list[str]) -> None:
        """Delete stored files; missing paths are ignored."""
        self._maybe_fail("remove")
        for path in paths:
            self._objects.pop((bucket, path), None)

    async def aclose(self) -> None:
        """Release connections (no-op for memory)."""
        pass

    def _maybe_fail(self, action: str) -> None:
        pending = self._failures.get(action)
        if pending:
            raise pending.popleft()
