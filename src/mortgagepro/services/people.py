"""People (contacts) service."""

from __future__ import annotations

from mortgagepro.backends.query import TableQuery
from mortgagepro.errors import ValidationError
from mortgagepro.services.base import EntityService, mutation_alias
from mortgagepro.types import Row
from mortgagepro.validation import check_email, require

SEARCH_COLUMNS = ("first_name", "last_name", "email_primary", "company_name")


def validate_person(values: Row) -> list[str]:
    """Return the rule violations for a person record."""
    errors: list[str] = []
    require(errors, values.get("first_name"), "First name is required")
    require(errors, values.get("last_name"), "Last name is required")
    require(errors, values.get("email_primary"), "Primary email is required")
    check_email(errors, values.get("email_primary"))
    require(errors, values.get("contact_type"), "Contact type is required")
    return errors


def full_name(person: Row | None) -> str:
    if not person:
        return ""
    return " ".join(
        part for part in (person.get("first_name"), person.get("last_name")) if part
    )


class PeopleService(EntityService):
    """Contacts shared by clients, lenders and realtors.

    Filters: contact_type, status, search (name, email or company).
    """

    entity = "people"
    singular = "person"
    label = "Person"
    activity_column = "people_id"

    add_person = mutation_alias("add")
    update_person = mutation_alias("update")
    delete_person = mutation_alias("delete")

    def apply_filters(self, query: TableQuery) -> TableQuery:
        if self.filters.get("contact_type"):
            query = query.eq("contact_type", self.filters["contact_type"])
        if self.filters.get("status"):
            query = query.eq("status", self.filters["status"])
        if self.filters.get("search"):
            pattern = f"%{self.filters['search']}%"
            query = query.or_(*((column, "ilike", pattern) for column in SEARCH_COLUMNS))
        return query

    def prepare(self, values: Row) -> Row:
        errors = validate_person(values)
        if errors:
            raise ValidationError(errors)
        return {**values, "email_primary": values["email_primary"].strip()}

    def describe(self, row: Row) -> str:
        return full_name(row)
