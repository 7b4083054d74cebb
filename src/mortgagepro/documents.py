"""Document categories, upload rules and progress tracking."""

from __future__ import annotations

import posixpath
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from mortgagepro.types import Row

MAX_FILE_SIZE = 25 * 1024 * 1024

ALLOWED_FILE_TYPES = frozenset(
    {
        "application/pdf",
        "image/jpeg",
        "image/jpg",
        "image/png",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    }
)
ALLOWED_FILE_EXTENSIONS = frozenset({".pdf", ".jpg", ".jpeg", ".png", ".docx", ".xlsx"})

DOCUMENT_STATUSES = ("pending", "approved", "rejected", "expired")

CATEGORY_DOCUMENT_TYPES: dict[str, tuple[str, ...]] = {
    "identification": ("drivers_license", "passport", "social_security_card"),
    "income": ("tax_return", "pay_stub", "w2", "1099", "employment_verification"),
    "assets": ("bank_statement", "asset_verification", "investment_statements"),
    "property": ("insurance", "appraisal", "property_tax", "title_documents"),
    "additional": ("credit_report", "other"),
}

CATEGORY_LABELS = {
    "identification": "Identification Documents",
    "income": "Income Verification",
    "assets": "Asset Documentation",
    "property": "Property Documents",
    "additional": "Additional Documents",
}

DOCUMENT_TYPE_LABELS = {
    "tax_return": "Tax Return",
    "bank_statement": "Bank Statement",
    "pay_stub": "Pay Stub",
    "w2": "W-2 Form",
    "1099": "1099 Form",
    "credit_report": "Credit Report",
    "asset_verification": "Asset Verification",
    "insurance": "Insurance Documents",
    "drivers_license": "Driver's License",
    "passport": "Passport",
    "social_security_card": "Social Security Card",
    "employment_verification": "Employment Verification",
    "investment_statements": "Investment Statements",
    "appraisal": "Property Appraisal",
    "property_tax": "Property Tax Documents",
    "title_documents": "Title Documents",
    "other": "Other",
}


@dataclass(frozen=True)
class DocumentUpload:
    """A client document about to be stored."""

    filename: str
    content: bytes
    content_type: str
    category: str
    document_type: str
    client_id: str
    loan_id: str | None = None
    description: str | None = None
    compliance_required: bool = False
    expiration_date: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class LenderDocumentUpload:
    """A lender document about to be stored."""

    name: str
    filename: str
    content: bytes
    content_type: str
    lender_id: str
    description: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class CategoryProgress:
    category: str
    total: int
    approved: int
    pending: int
    rejected: int
    percentage: int


def validate_file(filename: str, content_type: str, size: int) -> list[str]:
    """Size and type rules shared by client and lender uploads."""
    errors: list[str] = []
    if size > MAX_FILE_SIZE:
        errors.append("File size exceeds 25MB limit")
    extension = posixpath.splitext(filename)[1].lower()
    if content_type not in ALLOWED_FILE_TYPES or extension not in ALLOWED_FILE_EXTENSIONS:
        errors.append("File type not allowed. Allowed types: PDF, JPG, PNG, DOCX, XLSX")
    return errors


def validate_upload(upload: DocumentUpload) -> list[str]:
    """Return every rule the upload breaks; empty when it may be stored."""
    errors = validate_file(upload.filename, upload.content_type, upload.size)
    types = CATEGORY_DOCUMENT_TYPES.get(upload.category)
    if types is None:
        errors.append(f"Unknown document category: {upload.category}")
    elif upload.document_type not in types:
        errors.append(
            f"Document type '{upload.document_type}' does not belong to "
            f"category '{upload.category}'"
        )
    return errors


def filter_documents(docs: Iterable[Row], filters: Mapping[str, Any] | None = None) -> list[Row]:
    """Keep documents matching category, status, loan_id and document_type."""
    filters = filters or {}
    columns = {
        "category": "document_category",
        "status": "document_status",
        "loan_id": "loan_id",
        "document_type": "document_type",
    }
    wanted = {columns[k]: v for k, v in filters.items() if k in columns and v}
    return [doc for doc in docs if all(doc.get(c) == v for c, v in wanted.items())]


def documents_by_category(docs: Iterable[Row], category: str) -> list[Row]:
    return [doc for doc in docs if doc.get("document_category") == category]


def documents_by_loan(docs: Iterable[Row], loan_id: str) -> list[Row]:
    return [doc for doc in docs if doc.get("loan_id") == loan_id]


def _percent(part: int, total: int) -> int:
    # Half-up rounding of the approved share
    return int(part * 100 / total + 0.5) if total else 0


def category_progress(docs: Iterable[Row], category: str) -> CategoryProgress:
    in_category = documents_by_category(docs, category)
    statuses = [doc.get("document_status") for doc in in_category]
    approved = statuses.count("approved")
    return CategoryProgress(
        category=category,
        total=len(in_category),
        approved=approved,
        pending=statuses.count("pending"),
        rejected=statuses.count("rejected"),
        percentage=_percent(approved, len(in_category)),
    )


def overall_progress(docs: Iterable[Row]) -> int:
    """Percent of all documents that are approved."""
    docs = list(docs)
    approved = sum(1 for doc in docs if doc.get("document_status") == "approved")
    return _percent(approved, len(docs))


__all__ = [
    "ALLOWED_FILE_EXTENSIONS",
    "ALLOWED_FILE_TYPES",
    "CATEGORY_DOCUMENT_TYPES",
    "CATEGORY_LABELS",
    "CategoryProgress",
    "DOCUMENT_STATUSES",
    "DOCUMENT_TYPE_LABELS",
    "DocumentUpload",
    "LenderDocumentUpload",
    "MAX_FILE_SIZE",
    "category_progress",
    "documents_by_category",
    "documents_by_loan",
    "filter_documents",
    "overall_progress",
    "validate_file",
    "validate_upload",
]
