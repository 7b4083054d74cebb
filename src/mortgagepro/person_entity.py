"""Create a client, lender or realtor together with its contact person.

The writes are person (unless an existing person is selected), then the
entity row, then the ``{entity}_people`` junction row. If a later write
fails, rows already written by the same call are deleted again, newest
first, so a failed creation never leaves an orphaned person behind.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Literal, Union

from mortgagepro.backends.base import DataBackend
from mortgagepro.errors import AuthenticationError, ValidationError, describe_error
from mortgagepro.feedback import Toaster
from mortgagepro.keys import make_key
from mortgagepro.query_client import QueryClient
from mortgagepro.services.people import validate_person
from mortgagepro.types import Row, Session
from mortgagepro.validation import in_range, non_negative, require

logger = logging.getLogger(__name__)

EntityKind = Literal["client", "lender", "realtor"]


@dataclass
class PersonFields:
    """Contact details for a new person."""

    first_name: str = ""
    last_name: str = ""
    email_primary: str = ""
    contact_type: str = ""
    company_name: str | None = None
    title_position: str | None = None
    email_secondary: str | None = None
    phone_primary: str | None = None
    phone_secondary: str | None = None
    address_street: str | None = None
    address_city: str | None = None
    address_state: str | None = None
    address_zip: str | None = None
    preferred_communication_method: str | None = None
    last_contact_date: str | None = None
    next_follow_up_date: str | None = None
    relationship_strength_score: int = 5
    contact_source: str | None = None
    tags: list[str] = field(default_factory=list)
    notes: str | None = None
    status: str = "active"

    def validate(self) -> list[str]:
        return validate_person(asdict(self))

    def to_row(self, user_id: str) -> Row:
        return {**asdict(self), "user_id": user_id}


class _EntityFields:
    kind: ClassVar[EntityKind]
    table: ClassVar[str]
    relationship_type: ClassVar[str] = "contact"

    @property
    def junction(self) -> str:
        return f"{self.kind}_people"

    @property
    def id_column(self) -> str:
        return f"{self.kind}_id"

    @property
    def label(self) -> str:
        return self.kind.capitalize()

    def validate(self) -> list[str]:
        return []

    def to_row(self, person_id: str, user_id: str) -> Row:
        return {**asdict(self), "people_id": person_id, "user_id": user_id}  # type: ignore[arg-type]


@dataclass
class ClientFields(_EntityFields):
    kind: ClassVar[EntityKind] = "client"
    table: ClassVar[str] = "clients"
    relationship_type: ClassVar[str] = "primary_client"

    client_type: str | None = None
    annual_income: float | None = None
    credit_score: int | None = None
    debt_to_income_ratio: float | None = None
    first_time_buyer: bool | None = None
    veteran_status: bool | None = None
    employment_status: str | None = None
    employer_name: str | None = None
    job_title: str | None = None
    marital_status: str | None = None
    dependents_count: int | None = None
    housing_situation: str | None = None
    date_of_birth: str | None = None

    def validate(self) -> list[str]:
        errors: list[str] = []
        non_negative(errors, self.annual_income, "Annual income cannot be negative")
        in_range(errors, self.credit_score, 300, 850, "Credit score must be between 300 and 850")
        return errors

    def to_row(self, person_id: str, user_id: str) -> Row:
        return {
            **super().to_row(person_id, user_id),
            "client_status": "active",
            "status": "active",
        }


@dataclass
class LenderFields(_EntityFields):
    kind: ClassVar[EntityKind] = "lender"
    table: ClassVar[str] = "lenders"

    name: str = ""
    type: str = ""
    status: str = "active"
    notes: str | None = None

    def validate(self) -> list[str]:
        errors: list[str] = []
        require(errors, self.name, "Lender name is required")
        require(errors, self.type, "Lender type is required")
        return errors


@dataclass
class RealtorFields(_EntityFields):
    kind: ClassVar[EntityKind] = "realtor"
    table: ClassVar[str] = "realtors"

    license_number: str | None = None
    license_state: str | None = None
    brokerage_name: str | None = None
    specialty_areas: list[str] | None = None
    years_experience: int | None = None
    performance_rating: float | None = None
    active_status: bool = True
    geographic_focus: str | None = None
    price_range_focus: str | None = None
    communication_style: str | None = None
    technology_adoption_level: str | None = None
    preferred_lenders: list[str] | None = None
    commission_split_expectation: float | None = None
    referral_fee_standard: float | None = None
    marketing_co_op_available: bool | None = None
    average_deals_per_month: float | None = None
    total_deals_closed: int | None = None
    total_referrals_sent: int | None = None
    relationship_level: int | None = None
    notes: str | None = None

    def validate(self) -> list[str]:
        errors: list[str] = []
        non_negative(errors, self.years_experience, "Years of experience cannot be negative")
        in_range(
            errors, self.performance_rating, 1, 10, "Performance rating must be between 1 and 10"
        )
        in_range(
            errors,
            self.commission_split_expectation,
            0,
            100,
            "Commission split expectation must be between 0 and 100",
        )
        non_negative(errors, self.referral_fee_standard, "Referral fee cannot be negative")
        non_negative(
            errors, self.average_deals_per_month, "Average deals per month cannot be negative"
        )
        non_negative(errors, self.total_deals_closed, "Total deals closed cannot be negative")
        non_negative(errors, self.total_referrals_sent, "Total referrals sent cannot be negative")
        in_range(
            errors, self.relationship_level, 1, 10, "Relationship level must be between 1 and 10"
        )
        return errors


EntityFields = Union[ClientFields, LenderFields, RealtorFields]


@dataclass(frozen=True)
class CreationResult:
    success: bool
    person: Row | None = None
    entity: Row | None = None
    is_existing_person: bool = False
    error: str | None = None


class PersonEntityCreator:
    """Creates person + entity + junction rows and reports a CreationResult."""

    def __init__(
        self,
        client: QueryClient,
        backend: DataBackend,
        session: Session | None,
        toaster: Toaster,
    ) -> None:
        if session is None or not session.user_id:
            raise AuthenticationError()
        self.client = client
        self.backend = backend
        self.session = session
        self.toaster = toaster
        self.is_creating = False

    @property
    def user_id(self) -> str:
        return self.session.user_id

    async def create(
        self,
        entity_fields: EntityFields,
        person_fields: PersonFields | None = None,
        existing_person_id: str | None = None,
    ) -> CreationResult:
        """Validate, then write. Never raises; failures come back in the result."""
        self.is_creating = True
        try:
            existing = await self._validate(entity_fields, person_fields, existing_person_id)
            person, entity = await self._write(entity_fields, person_fields, existing)
        except Exception as exc:
            message = describe_error(exc)
            logger.warning("Creating %s failed: %s", entity_fields.kind, message)
            self.toaster.error("Error", message)
            return CreationResult(success=False, error=message)
        finally:
            self.is_creating = False

        is_existing = existing is not None
        suffix = "created with existing person" if is_existing else "created successfully"
        self.toaster.success("Success", f"{entity_fields.label} {suffix}")

        self.client.invalidate_queries(make_key("people"))
        self.client.invalidate_queries(make_key(entity_fields.table))
        return CreationResult(
            success=True, person=person, entity=entity, is_existing_person=is_existing
        )

    async def _validate(
        self,
        entity_fields: EntityFields,
        person_fields: PersonFields | None,
        existing_person_id: str | None,
    ) -> Row | None:
        errors: list[str] = []
        if not existing_person_id:
            errors.extend((person_fields or PersonFields()).validate())
        errors.extend(entity_fields.validate())

        existing = None
        if existing_person_id:
            existing, selection_errors = await self._check_existing(
                existing_person_id, entity_fields.kind
            )
            errors.extend(selection_errors)
        if errors:
            raise ValidationError(errors)
        return existing

    async def _check_existing(self, person_id: str, expected: str) -> tuple[Row | None, list[str]]:
        try:
            rows = await (
                self.backend.table("people")
                .select("*")
                .eq("id", person_id)
                .eq("user_id", self.user_id)
                .limit(1)
                .execute()
            )
        except Exception:
            logger.warning("Could not load selected person %s", person_id, exc_info=True)
            return None, ["Failed to validate selected person"]
        if not rows:
            return None, ["Selected person not found"]
        person = rows[0]
        if person.get("contact_type") != expected:
            return person, [
                f"Selected person has contact type '{person.get('contact_type')}' "
                f"but expected '{expected}'"
            ]
        return person, []

    async def _write(
        self,
        entity_fields: EntityFields,
        person_fields: PersonFields | None,
        existing: Row | None,
    ) -> tuple[Row, Row]:
        written: list[tuple[str, Any]] = []
        try:
            if existing is not None:
                person = existing
            elif person_fields is None:
                raise ValidationError(["Person details are required"])
            else:
                person = await self._insert("people", person_fields.to_row(self.user_id))
                written.append(("people", person["id"]))

            entity = await self._insert(
                entity_fields.table, entity_fields.to_row(person["id"], self.user_id)
            )
            written.append((entity_fields.table, entity["id"]))

            await self._insert(
                entity_fields.junction,
                {
                    entity_fields.id_column: entity["id"],
                    "person_id": person["id"],
                    "user_id": self.user_id,
                    "is_primary": True,
                    "relationship_type": entity_fields.relationship_type,
                },
            )
        except Exception:
            await self._compensate(written)
            raise
        logger.info("Created %s %s for person %s", entity_fields.kind, entity["id"], person["id"])
        return person, entity

    async def _insert(self, table: str, row: Row) -> Row:
        return await self.backend.table(table).insert(row).select("*").single().execute()

    async def _compensate(self, written: list[tuple[str, Any]]) -> None:
        for table, row_id in reversed(written):
            try:
                await (
                    self.backend.table(table)
                    .delete()
                    .eq("id", row_id)
                    .eq("user_id", self.user_id)
                    .execute()
                )
                logger.info("Rolled back %s row %s", table, row_id)
            except Exception:
                logger.exception("Failed to roll back %s row %s", table, row_id)


__all__ = [
    "ClientFields",
    "CreationResult",
    "EntityFields",
    "LenderFields",
    "PersonEntityCreator",
    "PersonFields",
    "RealtorFields",
]
