"""Client and lender document services."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from mortgagepro.activity import ActivityLogger
from mortgagepro.backends.base import DataBackend, StorageBackend
from mortgagepro.backends.query import TableQuery
from mortgagepro.documents import (
    DocumentUpload,
    LenderDocumentUpload,
    validate_file,
    validate_upload,
)
from mortgagepro.errors import StorageError, ValidationError
from mortgagepro.feedback import Toaster
from mortgagepro.query_client import QueryClient
from mortgagepro.services.base import EntityService, mutation_alias, now_iso, temp_id
from mortgagepro.types import Row, Session
from mortgagepro.webhooks import WebhookNotifier

if TYPE_CHECKING:
    from mortgagepro.config import Settings

logger = logging.getLogger(__name__)


def _ms() -> int:
    return int(time.time() * 1000)


class DocumentsService(EntityService):
    """Client documents: storage object plus a tracked ``documents`` row.

    Filters: client_id.
    """

    entity = "documents"
    singular = "document"
    label = "Document"
    activity_column = "document_id"
    added_verb = "uploaded"

    add_document = mutation_alias("add")
    update_document = mutation_alias("update")
    delete_document = mutation_alias("delete")

    def __init__(
        self,
        client: QueryClient,
        backend: DataBackend,
        session: Session | None,
        activity: ActivityLogger,
        toaster: Toaster,
        storage: StorageBackend,
        filters: Mapping[str, Any] | None = None,
        *,
        bucket: str = "client-documents",
        signed_url_ttl: int = 3600,
    ) -> None:
        super().__init__(client, backend, session, activity, toaster, filters)
        self.storage = storage
        self.bucket = bucket
        self.signed_url_ttl = signed_url_ttl

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: QueryClient,
        backend: DataBackend,
        session: Session | None,
        activity: ActivityLogger,
        toaster: Toaster,
        storage: StorageBackend,
        filters: Mapping[str, Any] | None = None,
    ) -> DocumentsService:
        return cls(
            client,
            backend,
            session,
            activity,
            toaster,
            storage,
            filters,
            bucket=settings.documents_bucket,
            signed_url_ttl=settings.signed_url_ttl,
        )

    async def update_status(self, document_id: str, status: str, notes: str | None = None) -> Row:
        changes: Row = {"id": document_id, "document_status": status, "updated_at": now_iso()}
        if notes:
            changes["notes"] = notes
        return await self.update.mutate_async(changes)

    async def mark_compliant(self, document_id: str, compliant: bool) -> Row:
        return await self.update.mutate_async(
            {"id": document_id, "compliance_required": compliant, "updated_at": now_iso()}
        )

    async def signed_url(self, doc: Row, ttl: int | None = None) -> str:
        """Temporary URL for a document's stored file."""
        path = doc.get("storage_path") or doc.get("file_path")
        if not path:
            raise StorageError("No file path available")
        return await self.storage.create_signed_url(
            self.bucket, path, ttl or self.signed_url_ttl
        )

    async def download(self, doc: Row) -> bytes:
        path = doc.get("storage_path") or doc.get("file_path")
        if not path:
            raise StorageError("No file path available")
        return await self.storage.download(self.bucket, path)

    def apply_filters(self, query: TableQuery) -> TableQuery:
        if self.filters.get("client_id"):
            query = query.eq("client_id", self.filters["client_id"])
        return query

    def storage_path(self, upload: DocumentUpload) -> str:
        return f"{self.user_id}/{upload.client_id}/{upload.category}/{_ms()}_{upload.filename}"

    def optimistic_item(self, upload: DocumentUpload) -> Row:  # type: ignore[override]
        now = now_iso()
        return {
            "id": temp_id(),
            "user_id": self.user_id,
            "client_id": upload.client_id,
            "loan_id": upload.loan_id,
            "name": upload.filename,
            "document_category": upload.category,
            "document_type": upload.document_type,
            "file_type": upload.content_type,
            "file_size": upload.size,
            "document_status": "pending",
            "created_at": now,
            "updated_at": now,
        }

    async def _insert(self, upload: DocumentUpload) -> Row:  # type: ignore[override]
        errors = validate_upload(upload)
        if errors:
            raise ValidationError(errors)

        path = await self.storage.upload(
            self.bucket, self.storage_path(upload), upload.content, content_type=upload.content_type
        )
        row = {
            "user_id": self.user_id,
            "client_id": upload.client_id,
            "loan_id": upload.loan_id,
            "name": upload.filename,
            "description": upload.description,
            "document_category": upload.category,
            "document_type": upload.document_type,
            "file_path": path,
            "storage_path": path,
            "file_type": upload.content_type,
            "file_size": upload.size,
            "document_status": "pending",
            "compliance_required": upload.compliance_required,
            "expiration_date": upload.expiration_date,
            "uploaded_by": self.user_id,
            "lender_id": None,
        }
        created = await self.backend.table(self.entity).insert(row).select("*").single().execute()
        logger.info("Uploaded document %s to %s", created.get("id"), path)
        await self.log_activity(self.added_verb, created)
        return created

    async def _update(self, changes: Row) -> Row:
        updated = await super()._update(changes)
        if changes.get("document_status"):
            await self.log_activity("status_updated", updated)
        return updated

    async def _delete(self, document_id: str) -> Row:
        doc = await self.get(document_id)
        await (
            self.backend.table(self.entity)
            .delete()
            .eq("id", document_id)
            .eq("user_id", self.user_id)
            .execute()
        )
        if doc is None:
            return {"id": document_id}

        await self.log_activity("deleted", doc)
        path = doc.get("storage_path")
        if path:
            try:
                await self.storage.remove(self.bucket, [path])
            except Exception as exc:
                logger.warning("Storage deletion failed for %s: %s", path, exc)
        return doc

    def activity_row(self, verb: str, row: Row) -> Row | None:
        name, category = row.get("name"), row.get("document_category")
        descriptions = {
            "uploaded": f'Document "{name}" uploaded ({category})',
            "status_updated": f'Document "{name}" status changed to {row.get("document_status")}',
            "deleted": f'Document "{name}" deleted from {category}',
        }
        if verb not in descriptions:
            return None
        return {
            "action_type": f"document_{verb}",
            "client_id": row.get("client_id"),
            "document_id": row.get("id"),
            "description": descriptions[verb],
            "user_id": self.user_id,
        }

    def notification_row(self, verb: str, row: Row) -> Row:
        name, category = row.get("name"), row.get("document_category")
        messages = {
            "uploaded": f'Document "{name}" was uploaded to {category} category.',
            "status_updated": f'Document "{name}" status was updated to {row.get("document_status")}.',
            "deleted": f'Document "{name}" was deleted from {category} category.',
        }
        return {
            "user_id": self.user_id,
            "type": f"document_{verb}",
            "entity_id": row.get("client_id"),
            "entity_type": "client",
            "message": messages.get(verb, f'Document "{name}" was {verb}.'),
        }


class LenderDocumentsService(EntityService):
    """Documents attached to lenders, announced through an outbound webhook.

    Filters: lender_id.
    """

    entity = "documents"
    singular = "document"
    label = "Document"
    added_verb = "uploaded"

    upload_lender_document = mutation_alias("add")
    delete_lender_document = mutation_alias("delete")

    def __init__(
        self,
        client: QueryClient,
        backend: DataBackend,
        session: Session | None,
        activity: ActivityLogger,
        toaster: Toaster,
        storage: StorageBackend,
        notifier: WebhookNotifier | None = None,
        filters: Mapping[str, Any] | None = None,
        *,
        bucket: str = "lender_documents",
        signed_url_ttl: int = 3600,
    ) -> None:
        super().__init__(client, backend, session, activity, toaster, filters)
        self.storage = storage
        self.notifier = notifier
        self.bucket = bucket
        self.signed_url_ttl = signed_url_ttl

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: QueryClient,
        backend: DataBackend,
        session: Session | None,
        activity: ActivityLogger,
        toaster: Toaster,
        storage: StorageBackend,
        filters: Mapping[str, Any] | None = None,
    ) -> LenderDocumentsService:
        """Service wired to the configured bucket and upload webhook."""
        return cls(
            client,
            backend,
            session,
            activity,
            toaster,
            storage,
            WebhookNotifier.from_settings(settings),
            filters,
            bucket=settings.lender_documents_bucket,
            signed_url_ttl=settings.signed_url_ttl,
        )

    def apply_filters(self, query: TableQuery) -> TableQuery:
        if self.filters.get("lender_id"):
            query = query.eq("lender_id", self.filters["lender_id"])
        return query

    def storage_path(self, upload: LenderDocumentUpload) -> str:
        extension = upload.filename.rsplit(".", 1)[-1] if "." in upload.filename else ""
        safe_name = re.sub(r"\s+", "_", upload.name)
        path = f"{self.user_id}/lender-documents/{upload.lender_id}/{_ms()}_{safe_name}"
        return f"{path}.{extension}" if extension else path

    def optimistic_item(self, upload: LenderDocumentUpload) -> Row:  # type: ignore[override]
        now = now_iso()
        return {
            "id": temp_id(),
            "user_id": self.user_id,
            "lender_id": upload.lender_id,
            "name": upload.name,
            "description": upload.description,
            "file_type": upload.content_type,
            "file_size": upload.size,
            "created_at": now,
            "updated_at": now,
        }

    async def _insert(self, upload: LenderDocumentUpload) -> Row:  # type: ignore[override]
        errors = validate_file(upload.filename, upload.content_type, upload.size)
        if errors:
            raise ValidationError(errors)

        path = await self.storage.upload(
            self.bucket, self.storage_path(upload), upload.content, content_type=upload.content_type
        )
        created = await (
            self.backend.table(self.entity)
            .insert(
                {
                    "name": upload.name,
                    "description": upload.description,
                    "file_path": path,
                    "file_type": upload.content_type,
                    "file_size": upload.size,
                    "lender_id": upload.lender_id,
                    "user_id": self.user_id,
                }
            )
            .select("*")
            .single()
            .execute()
        )
        logger.info("Uploaded lender document %s to %s", created.get("id"), path)
        await self._announce(created)
        return created

    async def _delete(self, document_id: str) -> Row:
        doc = await self.get(document_id)
        if doc and doc.get("file_path"):
            await self.storage.remove(self.bucket, [doc["file_path"]])
        await (
            self.backend.table(self.entity)
            .delete()
            .eq("id", document_id)
            .eq("user_id", self.user_id)
            .execute()
        )
        return doc or {"id": document_id}

    def activity_row(self, verb: str, row: Row) -> Row | None:
        return None

    async def _announce(self, doc: Row) -> None:
        if self.notifier is None:
            return
        try:
            signed_url: str | None = await self.storage.create_signed_url(
                self.bucket, doc["file_path"], self.signed_url_ttl
            )
        except Exception as exc:
            logger.warning("Could not sign %s for webhook: %s", doc["file_path"], exc)
            signed_url = None
        self.notifier.notify(
            {
                "document_id": doc.get("id"),
                "lender_id": doc.get("lender_id"),
                "user_id": self.user_id,
                "name": doc.get("name"),
                "file_path": doc.get("file_path"),
                "file_type": doc.get("file_type"),
                "file_size": doc.get("file_size"),
                "signed_url": signed_url,
                "uploaded_at": doc.get("created_at") or now_iso(),
            }
        )
