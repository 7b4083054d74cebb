"""Realtors service."""

from __future__ import annotations

from mortgagepro.services.base import EntityService, mutation_alias
from mortgagepro.services.people import full_name
from mortgagepro.types import Row


class RealtorsService(EntityService):
    """Referral partners, each linked to a person through realtor_people."""

    entity = "realtors"
    singular = "realtor"
    label = "Realtor"
    activity_column = "realtor_id"
    defaults = {"active_status": True}

    add_realtor = mutation_alias("add")
    update_realtor = mutation_alias("update")
    delete_realtor = mutation_alias("delete")

    async def transform(self, rows: list[Row]) -> list[Row]:
        return await self.attach_people(rows, "realtor_people", "realtor_id")

    def describe(self, row: Row) -> str:
        return full_name(row.get("primary_person")) or str(row.get("brokerage_name") or "")
