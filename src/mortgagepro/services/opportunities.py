"""Opportunities service."""

from __future__ import annotations

import logging

from mortgagepro.backends.query import TableQuery
from mortgagepro.errors import describe_error
from mortgagepro.keys import make_key
from mortgagepro.services.base import EntityService, mutation_alias
from mortgagepro.services.people import full_name
from mortgagepro.types import Row

logger = logging.getLogger(__name__)


class OpportunitiesService(EntityService):
    """Leads moving through the opportunity stages.

    Filters: person_id, client_id and people_ids. Each opportunity carries
    its contact as ``people``.
    """

    entity = "opportunities"
    singular = "opportunity"
    label = "Opportunity"
    activity_column = "opportunity_id"
    added_verb = "created"
    defaults = {"stage": "inquiry"}

    add_opportunity = mutation_alias("add")
    update_opportunity = mutation_alias("update")
    delete_opportunity = mutation_alias("delete")

    async def change_stage(self, opportunity_id: str, stage: str) -> Row:
        """Move an opportunity to another stage column."""
        return await self.update.mutate_async({"id": opportunity_id, "stage": stage})

    async def convert_to_loan(self, opportunity_id: str, loan_data: Row) -> Row:
        """Mark an opportunity converted and open a loan from it."""
        try:
            await (
                self.backend.table(self.entity)
                .update({"stage": "converted"})
                .eq("id", opportunity_id)
                .eq("user_id", self.user_id)
                .execute()
            )
            loan = await (
                self.backend.table("loans")
                .insert(
                    {
                        **loan_data,
                        "user_id": self.user_id,
                        "opportunity_id": opportunity_id,
                    }
                )
                .select("*")
                .single()
                .execute()
            )
        except Exception as exc:
            self.toaster.error("Error converting opportunity", describe_error(exc))
            raise
        finally:
            self.invalidate()
            self.client.invalidate_queries(make_key("loans", self.user_id))

        try:
            opportunity = await self.get(opportunity_id) or {"id": opportunity_id}
        except Exception as exc:
            logger.warning("Could not reload opportunity %s: %s", opportunity_id, exc)
            opportunity = {"id": opportunity_id}
        await self.activity.log_activity_and_notify(
            {
                "action_type": "opportunity_updated",
                "description": self._about(
                    "Converted opportunity to loan", await self._person(opportunity)
                ),
                "user_id": self.user_id,
                "opportunity_id": opportunity_id,
                "client_id": opportunity.get("client_id"),
                "people_id": opportunity.get("people_id"),
            },
            self.notification_row("updated", opportunity),
        )
        self.toaster.success(
            "Opportunity converted",
            "The opportunity has been successfully converted to a loan.",
        )
        return loan

    def apply_filters(self, query: TableQuery) -> TableQuery:
        if self.filters.get("person_id"):
            query = query.eq("people_id", self.filters["person_id"])
        if self.filters.get("client_id"):
            query = query.eq("client_id", self.filters["client_id"])
        if self.filters.get("people_ids"):
            query = query.in_("people_id", self.filters["people_ids"])
        return query

    async def transform(self, rows: list[Row]) -> list[Row]:
        person_ids = sorted({r["people_id"] for r in rows if r.get("people_id")})
        people: dict[str, Row] = {}
        if person_ids:
            found = await self.backend.table("people").select("*").in_("id", person_ids).execute()
            people = {p["id"]: p for p in found}
        return [{**row, "people": people.get(row.get("people_id"))} for row in rows]

    def describe(self, row: Row) -> str:
        return full_name(row.get("people"))

    async def _update(self, changes: Row) -> Row:
        values = dict(changes)
        opportunity_id = values.pop("id")
        current = await self.get(opportunity_id)
        updated = await (
            self.backend.table(self.entity)
            .update(values)
            .eq("id", opportunity_id)
            .eq("user_id", self.user_id)
            .select("*")
            .single()
            .execute()
        )
        logger.info("Updated opportunity %s", opportunity_id)

        old_stage = current.get("stage") if current else None
        if "stage" in values and old_stage != values["stage"]:
            await self.activity.log_activity_and_notify(
                {
                    **(self.activity_row("updated", updated) or {}),
                    "action_type": "opportunity_stage_changed",
                    "description": self._about(
                        f'Changed opportunity stage from "{old_stage}" to "{values["stage"]}"',
                        await self._person(updated),
                    ),
                },
                self.notification_row("updated", updated),
            )
        else:
            await self.log_activity("updated", updated)
        return updated

    @staticmethod
    def _about(text: str, person: Row | None) -> str:
        name = full_name(person)
        return f"{text} for {name}" if name else text

    def activity_row(self, verb: str, row: Row) -> Row | None:
        activity = super().activity_row(verb, row)
        if activity is not None:
            activity["client_id"] = row.get("client_id")
            activity["people_id"] = row.get("people_id")
        return activity

    async def _person(self, opportunity: Row) -> Row | None:
        """Contact named in activity text. A failed lookup leaves the name out."""
        if not opportunity.get("people_id"):
            return None
        try:
            rows = await (
                self.backend.table("people")
                .select("*")
                .eq("id", opportunity["people_id"])
                .limit(1)
                .execute()
            )
        except Exception as exc:
            logger.warning(
                "Could not load contact %s for opportunity %s: %s",
                opportunity["people_id"],
                opportunity.get("id"),
                exc,
            )
            return None
        return rows[0] if rows else None
