"""Loans service."""

from __future__ import annotations

from typing import Any

from mortgagepro.backends.query import TableQuery
from mortgagepro.services.base import EntityService, mutation_alias
from mortgagepro.types import Row

FILTER_COLUMNS = ("client_id", "lender_id", "realtor_id")


class LoansService(EntityService):
    """Loans in the pipeline.

    Filters: client_id, lender_id, realtor_id and person_id. Each loan carries
    ``associated_people``: the client's person (source ``client``) and the
    originating opportunity's person (source ``opportunity``).
    """

    entity = "loans"
    singular = "loan"
    label = "Loan"
    activity_column = "loan_id"
    added_verb = "created"
    defaults = {"loan_status": "application", "priority_level": "medium"}

    add_loan = mutation_alias("add")
    update_loan = mutation_alias("update")
    delete_loan = mutation_alias("delete")

    async def change_status(self, loan_id: str, status: str) -> Row:
        """Move a loan to another pipeline column."""
        return await self.update.mutate_async({"id": loan_id, "loan_status": status})

    def apply_filters(self, query: TableQuery) -> TableQuery:
        for column in FILTER_COLUMNS:
            if self.filters.get(column):
                query = query.eq(column, self.filters[column])
        return query

    async def transform(self, rows: list[Row]) -> list[Row]:
        clients = await self._load("clients", {r.get("client_id") for r in rows})
        opportunities = await self._load(
            "opportunities", {r.get("opportunity_id") for r in rows}
        )
        people = await self._load(
            "people",
            {c.get("people_id") for c in clients.values()}
            | {o.get("people_id") for o in opportunities.values()},
        )

        result = []
        for row in rows:
            client = clients.get(row.get("client_id"))
            opportunity = opportunities.get(row.get("opportunity_id"))
            associated: list[Row] = []
            if client and client.get("people_id") in people:
                associated.append(
                    {
                        **people[client["people_id"]],
                        "relationship_source": "client",
                        "relationship_type": "primary_client",
                        "is_primary": True,
                    }
                )
            if opportunity and opportunity.get("people_id") in people:
                associated.append(
                    {
                        **people[opportunity["people_id"]],
                        "relationship_source": "opportunity",
                        "relationship_type": "primary_contact",
                        "is_primary": True,
                    }
                )
            result.append({**row, "associated_people": associated})

        person_id = self.filters.get("person_id")
        if person_id:
            result = [
                loan
                for loan in result
                if any(p.get("id") == person_id for p in loan["associated_people"])
            ]
        return result

    def describe(self, row: Row) -> str:
        return str(row.get("loan_number") or "")

    async def _load(self, table: str, ids: set[Any]) -> dict[str, Row]:
        wanted = sorted(i for i in ids if i)
        if not wanted:
            return {}
        rows = await self.backend.table(table).select("*").in_("id", wanted).execute()
        return {row["id"]: row for row in rows}
