"""Lenders service."""

from __future__ import annotations

from mortgagepro.services.base import EntityService, mutation_alias
from mortgagepro.types import Row


class LendersService(EntityService):
    """Lending institutions, each linked to contacts through lender_people."""

    entity = "lenders"
    singular = "lender"
    label = "Lender"
    activity_column = "lender_id"
    defaults = {"status": "active"}

    add_lender = mutation_alias("add")
    update_lender = mutation_alias("update")
    delete_lender = mutation_alias("delete")

    async def transform(self, rows: list[Row]) -> list[Row]:
        return await self.attach_people(rows, "lender_people", "lender_id")
