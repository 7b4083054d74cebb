"""Todos service with smart ordering."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from mortgagepro.backends.query import TableQuery
from mortgagepro.errors import ValidationError
from mortgagepro.services.base import EntityService, mutation_alias, now_iso
from mortgagepro.services.notes import linked_activity, linked_notification
from mortgagepro.types import Row

PRIORITY_ORDER = {"urgent": 0, "high": 1, "medium": 2, "low": 3}


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_overdue(todo: Row, now: datetime | None = None) -> bool:
    """Due in the past and not completed."""
    due = _parse_time(todo.get("due_date"))
    if due is None or todo.get("status") == "completed":
        return False
    return due < (now or datetime.now(timezone.utc))


def sort_todos(todos: list[Row], now: datetime | None = None) -> list[Row]:
    """Overdue first, then priority, then earliest due date, then newest."""
    now = now or datetime.now(timezone.utc)

    def created(todo: Row) -> float:
        stamp = _parse_time(todo.get("created_at"))
        return stamp.timestamp() if stamp else 0.0

    # Stable sorts, least significant key first
    ordered = sorted(todos, key=created, reverse=True)
    ordered.sort(
        key=lambda t: (
            _parse_time(t.get("due_date")) is None,
            _parse_time(t.get("due_date")) or now,
        )
    )
    ordered.sort(key=lambda t: PRIORITY_ORDER.get(t.get("priority") or "", len(PRIORITY_ORDER)))
    ordered.sort(key=lambda t: not is_overdue(t, now))
    return ordered


class TodosService(EntityService):
    """Tasks, optionally attached to another entity.

    Filters: entity_type, entity_id, status, priority, search, overdue.
    """

    entity = "todos"
    singular = "todo"
    label = "Todo"
    stale_time = "2m"
    gc_time = "5m"
    defaults = {"status": "pending", "priority": "medium", "tags": []}

    add_todo = mutation_alias("add")
    update_todo = mutation_alias("update")
    delete_todo = mutation_alias("delete")

    async def complete(self, todo_id: str) -> Row:
        return await self.update.mutate_async(
            {"id": todo_id, "status": "completed", "completed_at": now_iso()}
        )

    def apply_filters(self, query: TableQuery) -> TableQuery:
        filters = self.filters
        if filters.get("entity_type"):
            query = query.eq("entity_type", filters["entity_type"])
            if filters.get("entity_id"):
                query = query.eq("entity_id", filters["entity_id"])
        if filters.get("status"):
            query = query.eq("status", filters["status"])
        if filters.get("priority"):
            query = query.eq("priority", filters["priority"])
        if filters.get("search"):
            pattern = f"%{filters['search']}%"
            query = query.or_(("title", "ilike", pattern), ("description", "ilike", pattern))
        return query

    def apply_order(self, query: TableQuery) -> TableQuery:
        return query

    async def transform(self, rows: list[Row]) -> list[Row]:
        now = datetime.now(timezone.utc)
        if self.filters.get("overdue"):
            rows = [todo for todo in rows if is_overdue(todo, now)]
        return sort_todos(rows, now)

    def prepare(self, values: Row) -> Row:
        title = values.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError(["Todo title is required"])
        return {**values, "title": title.strip()}

    def activity_row(self, verb: str, row: Row) -> Row | None:
        if verb != "added":
            return None
        return linked_activity(self.singular, row, self.user_id)

    def notification_row(self, verb: str, row: Row) -> Row:
        return linked_notification(self.singular, row, self.user_id)
