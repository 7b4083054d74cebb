"""Notes service."""

from __future__ import annotations

from mortgagepro.backends.query import TableQuery
from mortgagepro.errors import ValidationError
from mortgagepro.services.base import ENTITY_ACTIVITY_COLUMNS, EntityService, mutation_alias
from mortgagepro.types import Row


def linked_activity(kind: str, row: Row, user_id: str) -> Row | None:
    """Activity row for a note or todo attached to another entity."""
    entity_type, entity_id = row.get("entity_type"), row.get("entity_id")
    if not (entity_type and entity_id):
        return None
    activity: Row = {
        "action_type": f"{kind}_added",
        "description": f"{kind.capitalize()} added to {entity_type}",
        "user_id": user_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
    }
    column = ENTITY_ACTIVITY_COLUMNS.get(entity_type)
    if column:
        activity[column] = entity_id
    return activity


def linked_notification(kind: str, row: Row, user_id: str) -> Row:
    entity_type = row.get("entity_type")
    return {
        "user_id": user_id,
        "type": f"{kind}_added",
        "entity_id": row.get("entity_id"),
        "entity_type": entity_type,
        "message": f"A new {kind} was added to the {entity_type}.",
    }


class NotesService(EntityService):
    """Free-text notes, optionally attached to another entity.

    Filters: entity_type, entity_id, category, pinned_only, search. Ordered
    pinned first, then newest first.
    """

    entity = "notes"
    singular = "note"
    label = "Note"
    stale_time = "2m"
    gc_time = "5m"
    defaults = {"is_pinned": False, "tags": []}

    add_note = mutation_alias("add")
    update_note = mutation_alias("update")
    delete_note = mutation_alias("delete")

    async def toggle_pin(self, note_id: str, pinned: bool) -> Row:
        return await self.update.mutate_async({"id": note_id, "is_pinned": pinned})

    def apply_filters(self, query: TableQuery) -> TableQuery:
        filters = self.filters
        if filters.get("entity_type"):
            query = query.eq("entity_type", filters["entity_type"])
            if filters.get("entity_id"):
                query = query.eq("entity_id", filters["entity_id"])
        if filters.get("category"):
            query = query.eq("category", filters["category"])
        if filters.get("pinned_only"):
            query = query.eq("is_pinned", True)
        if filters.get("search"):
            pattern = f"%{filters['search']}%"
            query = query.or_(("content", "ilike", pattern), ("title", "ilike", pattern))
        return query

    def apply_order(self, query: TableQuery) -> TableQuery:
        return query.order("is_pinned", desc=True).order("created_at", desc=True)

    def prepare(self, values: Row) -> Row:
        content = values.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError(["Note content is required"])
        return {**values, "content": content.strip()}

    def activity_row(self, verb: str, row: Row) -> Row | None:
        if verb != "added":
            return None
        return linked_activity(self.singular, row, self.user_id)

    def notification_row(self, verb: str, row: Row) -> Row:
        return linked_notification(self.singular, row, self.user_id)
