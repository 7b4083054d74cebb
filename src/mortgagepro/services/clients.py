"""Clients service."""

from __future__ import annotations

from mortgagepro.services.base import EntityService, mutation_alias
from mortgagepro.services.people import full_name
from mortgagepro.types import Row


class ClientsService(EntityService):
    """Borrowers, each linked to people through client_people."""

    entity = "clients"
    singular = "client"
    label = "Client"
    activity_column = "client_id"
    defaults = {"status": "active"}

    add_client = mutation_alias("add")
    update_client = mutation_alias("update")
    delete_client = mutation_alias("delete")

    async def transform(self, rows: list[Row]) -> list[Row]:
        return await self.attach_people(rows, "client_people", "client_id")

    def describe(self, row: Row) -> str:
        return full_name(row) or full_name(row.get("primary_person"))
