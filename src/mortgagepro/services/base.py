"""Base class for entity services.

An entity service owns one cached list per (entity, user, filters) key and
three optimistic list mutations over it. Subclasses set the class-level
attributes and override the hooks they need:

- apply_filters(query): narrow the list query
- transform(rows): shape fetched rows (flatten relationships, sort)
- prepare(values): clean values before insert (raise ValidationError here)
- describe(row): human-readable name used in activity text
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, ClassVar

from mortgagepro.activity import ActivityLogger
from mortgagepro.backends.base import DataBackend
from mortgagepro.backends.query import TableQuery
from mortgagepro.errors import AuthenticationError, describe_error
from mortgagepro.feedback import Toaster
from mortgagepro.keys import make_key
from mortgagepro.mutation import OptimisticListMutation, create_list_mutation
from mortgagepro.query_client import QueryClient
from mortgagepro.types import CacheKey, Duration, MutationContext, Row, Session

logger = logging.getLogger(__name__)

# Activity column that links an activity row to each entity type
ENTITY_ACTIVITY_COLUMNS = {
    "client": "client_id",
    "lender": "lender_id",
    "realtor": "realtor_id",
    "opportunity": "opportunity_id",
    "loan": "loan_id",
    "person": "people_id",
    "document": "document_id",
}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def temp_id() -> str:
    """Placeholder id for an optimistic item until the refetch replaces it."""
    return f"temp-{int(time.time() * 1000)}"


def merge_changes(item: Row, changes: Row) -> Row:
    return {**item, **changes}


def same_id(item: Row, changes: Row) -> bool:
    return bool(item.get("id") == changes.get("id"))


def id_matches(item: Row, entity_id: str) -> bool:
    return bool(item.get("id") == entity_id)


def mutation_alias(name: str) -> property:
    """Expose a base mutation under an entity-specific name."""
    return property(lambda self: getattr(self, name), doc=f"Alias for {name}.")


class EntityService:
    """Cached list plus add/update/delete optimistic mutations for one table."""

    entity: ClassVar[str]
    singular: ClassVar[str]
    label: ClassVar[str]
    activity_column: ClassVar[str | None] = None
    added_verb: ClassVar[str] = "added"
    stale_time: ClassVar[Duration] = "5m"
    gc_time: ClassVar[Duration] = "10m"
    defaults: ClassVar[Mapping[str, Any]] = {}

    def __init__(
        self,
        client: QueryClient,
        backend: DataBackend,
        session: Session | None,
        activity: ActivityLogger,
        toaster: Toaster,
        filters: Mapping[str, Any] | None = None,
    ) -> None:
        if session is None or not session.user_id:
            raise AuthenticationError()
        self.client = client
        self.backend = backend
        self.session = session
        self.activity = activity
        self.toaster = toaster
        self.filters = {k: v for k, v in (filters or {}).items() if v is not None}

        key = self.query_key()
        # Settling marks every list of the entity stale, filtered or not
        siblings = make_key(self.entity, self.user_id)
        self.add: OptimisticListMutation[Row, Row] = create_list_mutation(
            client,
            self._insert,
            key,
            add_item=self.optimistic_item,
            on_success=self._toast_success(self.added_verb.capitalize()),
            on_error=self._toast_error("adding"),
            invalidate_key=siblings,
        )
        self.update: OptimisticListMutation[Row, Row] = create_list_mutation(
            client,
            self._update,
            key,
            update_item=merge_changes,
            find_item=same_id,
            on_success=self._toast_success("Updated"),
            on_error=self._toast_error("updating"),
            invalidate_key=siblings,
        )
        self.delete: OptimisticListMutation[Row, str] = create_list_mutation(
            client,
            self._delete,
            key,
            remove_item=lambda entity_id: True,
            find_item=id_matches,
            on_success=self._toast_success("Deleted"),
            on_error=self._toast_error("deleting"),
            invalidate_key=siblings,
        )

    @property
    def user_id(self) -> str:
        return self.session.user_id

    def query_key(self, filters: Mapping[str, Any] | None = None) -> CacheKey:
        """Cache key for this service's list, narrowed by filters when given."""
        filters = self.filters if filters is None else filters
        clean = {k: v for k, v in filters.items() if v is not None}
        if clean:
            return make_key(self.entity, self.user_id, clean)
        return make_key(self.entity, self.user_id)

    async def list(self) -> list[Row]:
        """Return the cached list, fetching when missing or stale."""
        return await self.client.fetch_query(
            self.query_key(),
            self.fetch,
            stale_time=self.stale_time,
            gc_time=self.gc_time,
        )

    async def fetch(self) -> list[Row]:
        """Load the list from the backend, bypassing the cache."""
        query = self.backend.table(self.entity).select("*").eq("user_id", self.user_id)
        query = self.apply_filters(query)
        query = self.apply_order(query)
        rows = await query.execute()
        return await self.transform(list(rows or []))

    async def get(self, entity_id: str) -> Row | None:
        rows = await (
            self.backend.table(self.entity)
            .select("*")
            .eq("id", entity_id)
            .eq("user_id", self.user_id)
            .limit(1)
            .execute()
        )
        return rows[0] if rows else None

    def invalidate(self) -> int:
        """Mark every cached list of this entity stale."""
        return self.client.invalidate_queries(make_key(self.entity, self.user_id))

    # Hooks

    def apply_filters(self, query: TableQuery) -> TableQuery:
        return query

    def apply_order(self, query: TableQuery) -> TableQuery:
        return query.order("created_at", desc=True)

    async def transform(self, rows: list[Row]) -> list[Row]:
        return rows

    def prepare(self, values: Row) -> Row:
        return dict(values)

    def describe(self, row: Row) -> str:
        return str(row.get("name") or "")

    def optimistic_item(self, values: Row) -> Row:
        now = now_iso()
        return {
            **self.defaults,
            **values,
            "id": temp_id(),
            "user_id": self.user_id,
            "created_at": now,
            "updated_at": now,
        }

    # Remote writes

    async def _insert(self, values: Row) -> Row:
        row = {**self.defaults, **self.prepare(values), "user_id": self.user_id}
        created = await (
            self.backend.table(self.entity).insert(row).select("*").single().execute()
        )
        logger.info("Created %s %s", self.singular, created.get("id"))
        await self.log_activity(self.added_verb, created)
        return created

    async def _update(self, changes: Row) -> Row:
        values = dict(changes)
        entity_id = values.pop("id")
        updated = await (
            self.backend.table(self.entity)
            .update(values)
            .eq("id", entity_id)
            .eq("user_id", self.user_id)
            .select("*")
            .single()
            .execute()
        )
        logger.info("Updated %s %s", self.singular, entity_id)
        await self.log_activity("updated", updated)
        return updated

    async def _delete(self, entity_id: str) -> Row:
        await (
            self.backend.table(self.entity)
            .delete()
            .eq("id", entity_id)
            .eq("user_id", self.user_id)
            .execute()
        )
        logger.info("Deleted %s %s", self.singular, entity_id)
        await self.log_activity("deleted", {"id": entity_id})
        return {"id": entity_id}

    # Activity

    async def log_activity(self, verb: str, row: Row) -> None:
        activity = self.activity_row(verb, row)
        if activity is None:
            return
        await self.activity.log_activity_and_notify(
            activity, self.notification_row(verb, row)
        )

    def activity_row(self, verb: str, row: Row) -> Row | None:
        name = self.describe(row)
        activity: Row = {
            "action_type": f"{self.singular}_{verb}",
            "description": " ".join(part for part in (self.label, name, verb) if part),
            "user_id": self.user_id,
        }
        if self.activity_column:
            activity[self.activity_column] = row.get("id")
        return activity

    def notification_row(self, verb: str, row: Row) -> Row:
        name = self.describe(row)
        subject = f"{self.singular} ({name})" if name else self.singular
        return {
            "user_id": self.user_id,
            "type": f"{self.singular}_{verb}",
            "entity_id": row.get("id"),
            "entity_type": self.singular,
            "message": f"A {subject} was {verb}.",
        }

    # Feedback

    def _toast_success(self, verb: str) -> Any:
        def on_success(data: Any, variables: Any, context: MutationContext[Any]) -> None:
            self.toaster.success(
                f"{self.label} {verb}",
                f"{self.label} has been {verb.lower()} successfully.",
            )

        return on_success

    def _toast_error(self, gerund: str) -> Any:
        def on_error(
            error: BaseException, variables: Any, context: MutationContext[Any]
        ) -> None:
            self.toaster.error(
                f"Error {gerund} {self.singular}", describe_error(error)
            )

        return on_error

    # Relationships

    async def attach_people(self, rows: list[Row], junction: str, id_column: str) -> list[Row]:
        """Flatten {entity}_people links into people[] and primary_person."""
        if not rows:
            return []
        ids = [row["id"] for row in rows]
        links = await (
            self.backend.table(junction)
            .select("*")
            .eq("user_id", self.user_id)
            .in_(id_column, ids)
            .execute()
        )
        person_ids = sorted({link["person_id"] for link in links if link.get("person_id")})
        people: dict[str, Row] = {}
        if person_ids:
            found = await self.backend.table("people").select("*").in_("id", person_ids).execute()
            people = {person["id"]: person for person in found}

        result = []
        for row in rows:
            linked = [
                {
                    **people[link["person_id"]],
                    "is_primary": bool(link.get("is_primary")),
                    "relationship_type": link.get("relationship_type"),
                }
                for link in links
                if link.get(id_column) == row["id"] and link.get("person_id") in people
            ]
            primary = next((p for p in linked if p["is_primary"]), None)
            result.append({**row, "people": linked, "primary_person": primary})
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}(user_id={self.user_id!r}, filters={self.filters!r})"


__all__ = [
    "ENTITY_ACTIVITY_COLUMNS",
    "EntityService",
    "id_matches",
    "merge_changes",
    "mutation_alias",
    "now_iso",
    "same_id",
    "temp_id",
]
