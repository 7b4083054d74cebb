"""Assistant conversation history."""

from __future__ import annotations

import logging

from mortgagepro.backends.query import TableQuery
from mortgagepro.services.base import EntityService, mutation_alias
from mortgagepro.types import Row

logger = logging.getLogger(__name__)


class ConversationsService(EntityService):
    """Chat messages grouped by session id, oldest first.

    Construct with ``filters={"session_id": ...}`` to bind the list and the
    mutations to one session.
    """

    entity = "conversations"
    singular = "message"
    label = "Message"

    add_message = mutation_alias("add")
    delete_message = mutation_alias("delete")

    async def history(self, session_id: str) -> list[Row]:
        """Messages of one session, oldest first."""
        return await self.client.fetch_query(
            self.query_key({"session_id": session_id}),
            lambda: self._fetch_session(session_id),
            stale_time=self.stale_time,
            gc_time=self.gc_time,
        )

    async def sessions(self) -> list[str]:
        """Session ids, most recently active first."""
        rows = await (
            self.backend.table(self.entity)
            .select("session_id,created_at")
            .eq("user_id", self.user_id)
            .order("created_at", desc=True)
            .execute()
        )
        seen: dict[str, None] = {}
        for row in rows:
            if row.get("session_id"):
                seen.setdefault(row["session_id"], None)
        return list(seen)

    async def save_exchange(self, session_id: str, user_message: str, ai_message: str) -> bool:
        """Store a user message and its reply. Failures are logged, not raised."""
        rows = [
            {
                "user_id": self.user_id,
                "session_id": session_id,
                "sender": sender,
                "message": message,
            }
            for sender, message in (("user", user_message), ("ai", ai_message))
        ]
        try:
            await self.backend.table(self.entity).insert(rows).execute()
        except Exception as exc:
            logger.warning("Failed to save conversation %s: %s", session_id, exc)
            return False
        finally:
            self.invalidate()
        return True

    async def delete_session(self, session_id: str) -> None:
        await (
            self.backend.table(self.entity)
            .delete()
            .eq("session_id", session_id)
            .eq("user_id", self.user_id)
            .execute()
        )
        self.invalidate()

    def apply_filters(self, query: TableQuery) -> TableQuery:
        if self.filters.get("session_id"):
            query = query.eq("session_id", self.filters["session_id"])
        return query

    def apply_order(self, query: TableQuery) -> TableQuery:
        return query.order("created_at")

    def prepare(self, values: Row) -> Row:
        if self.filters.get("session_id"):
            return {"session_id": self.filters["session_id"], **values}
        return dict(values)

    def activity_row(self, verb: str, row: Row) -> Row | None:
        return None

    async def _fetch_session(self, session_id: str) -> list[Row]:
        return await (
            self.backend.table(self.entity)
            .select("*")
            .eq("user_id", self.user_id)
            .eq("session_id", session_id)
            .order("created_at")
            .execute()
        )
