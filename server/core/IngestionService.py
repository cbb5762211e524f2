"""Turns an uploaded invoice file (or a manual entry) into a stored record.

Pipeline: extract → normalize date → summarize → (categorize | detect recurrence | embed).
Extraction and summarization are fatal on failure. The three enrichments run
concurrently, each behind its own failure boundary, and fall back to safe
values when they fail. The record is written with a single insert after every
stage has resolved.

The service also owns the other two mutations of a stored invoice: manual
full-field edits (re-running the pipeline minus extraction) and the soft-delete
flag, plus the user-facing recurrence toggle.
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Awaitable, TypeVar

import httpx

from shared.ai.AIStageClients import AIStageClients
from shared.ai.models.StageOutputs import ExtractionOutput, RecurrenceOutput
from shared.clients.blob.BlobClientInterface import BlobClientInterface
from shared.clients.docstore.DocStoreClientInterface import DocStoreClientInterface
from shared.clients.docstore.DocStoreClientManager import DocStoreClientManager
from shared.errors.ClientErrors import ClientRequestError, DocStoreError
from shared.errors.InvoiceErrors import BlobStorageError, FatalPipelineError, InvalidInputError, NotFoundError, StorageError
from shared.helper.DateNormalizer import DateNormalizer
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperValidation import validate_record_id, validate_tenant_id
from shared.helper.RecordDecoder import RecordDecoder
from shared.models.invoice import (
    F_CATEGORIES, F_DATE, F_DELETED_AT, F_FILE_NAME, F_ID, F_IS_DELETED, F_IS_LIKELY_RECURRING,
    F_LINE_ITEMS, F_RECURRENCE_REASONING, F_SOURCE_FILE_URI, F_SUMMARY, F_SUMMARY_EMBEDDING,
    F_TENANT_ID, F_TOTAL, F_UPLOADED_AT, F_VENDOR, GENERAL_EXPENSE, UNCATEGORIZED,
    Invoice, LineItem, ManualInvoiceEntry,
)
from shared.models.pipeline import Stage, StageResult, StageSeverity

T = TypeVar("T")

DEFAULT_MAX_FILE_BYTES = 10 * 1024 * 1024
DEFAULT_ALLOWED_MIME_TYPES = ["application/pdf", "image/jpeg", "image/png", "image/webp"]
TOTAL_DIVERGENCE_TOLERANCE = 0.01

MSG_SERVICE_UNAVAILABLE = "The AI service is currently unavailable or timed out. Please try again later."
MSG_UNSUPPORTED_FORMAT = "The AI service could not process the file's format. Please ensure it's a clear PDF, JPG, or PNG."
MSG_UNREADABLE = "The uploaded file appears to be corrupted or unreadable."
MSG_EXTRACTION_FAILED = "Failed to extract key data from invoice. The document might not be a valid invoice or is unreadable by the AI."
MSG_SUMMARY_FAILED = "The AI service could not summarize this invoice. Please try again later."

STORE_ERRORS = (DocStoreError,)


def classify_upstream_error(stage: Stage, error: Exception) -> str:
    """Map a fatal stage error to a sanitized, user-facing message."""
    text = str(error)
    if isinstance(error, (httpx.TimeoutException, httpx.ConnectError)):
        return MSG_SERVICE_UNAVAILABLE
    if isinstance(error, ClientRequestError) and error.status_code in (502, 503, 504):
        return MSG_SERVICE_UNAVAILABLE
    if "Deadline exceeded" in text or "unavailable" in text:
        return MSG_SERVICE_UNAVAILABLE
    if "Invalid media type" in text or "Unsupported input content type" in text:
        return MSG_UNSUPPORTED_FORMAT
    if "unparsable" in text or "malformed" in text:
        return MSG_UNREADABLE
    return MSG_EXTRACTION_FAILED if stage == Stage.EXTRACT else MSG_SUMMARY_FAILED


@dataclass
class DerivedFields:
    """Everything the AI stages contribute to a record besides the extracted data."""

    summary: str
    summary_embedding: list[float] | None
    categories: list[str]
    is_likely_recurring: bool
    recurrence_reasoning: str | None


class IngestionService:
    """Orchestrates the AI stages and writes invoice records to the document store."""

    def __init__(
        self,
        helper_config: HelperConfig,
        store_pool: DocStoreClientManager,
        stages: AIStageClients,
        date_normalizer: DateNormalizer,
        decoder: RecordDecoder,
        blob_client: BlobClientInterface | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._pool = store_pool
        self._stages = stages
        self._dates = date_normalizer
        self._decoder = decoder
        self._blob = blob_client
        self.max_file_bytes = helper_config.get_number_val("INGEST_MAX_FILE_BYTES", default=DEFAULT_MAX_FILE_BYTES)
        self.allowed_mime_types = helper_config.get_list_val("INGEST_ALLOWED_MIME_TYPES", default=DEFAULT_ALLOWED_MIME_TYPES)

    ##########################################
    ############### INGESTION ################
    ##########################################

    async def ingest(self, tenant_id: str, file_bytes: bytes, mime_type: str, file_name: str) -> Invoice:
        """Run the full pipeline for an uploaded invoice file and store the result.

        Args:
            tenant_id (str): The owning tenant.
            file_bytes (bytes): Raw file content.
            mime_type (str): MIME type reported by the uploader.
            file_name (str): Original file name, used for display.

        Returns:
            Invoice: The stored invoice.

        Raises:
            InvalidInputError: Tenant id, file type or file size rejected.
            BlobStorageError: The original file could not be stored.
            FatalPipelineError: Extraction or summarization failed.
            StorageError: The record could not be written.
        """
        validate_tenant_id(tenant_id)
        self._validate_file(file_bytes, mime_type, file_name)
        self.logging.info("Ingesting %r for tenant=%s (%s, %d bytes)", file_name, tenant_id, mime_type, len(file_bytes))

        source_file_uri = await self._store_original(tenant_id, file_bytes, mime_type, file_name)

        extraction: StageResult[ExtractionOutput] = await self._run_stage(
            Stage.EXTRACT, tenant_id, self._stages.extract.run(file_bytes, mime_type)
        )
        if not extraction.ok:
            raise self._fatal(extraction)
        extracted = extraction.value
        date = self._dates.normalize(extracted.date, context=f"tenant {tenant_id}, file {file_name!r}")
        self._check_total(tenant_id, file_name, extracted.total, extracted.line_items)

        derived = await self._derive(tenant_id, extracted.vendor, date, extracted.total, extracted.line_items)
        return await self._insert(
            tenant_id=tenant_id,
            file_name=file_name,
            vendor=extracted.vendor,
            date=date,
            total=extracted.total,
            line_items=extracted.line_items,
            derived=derived,
            source_file_uri=source_file_uri,
        )

    async def ingest_manual(self, tenant_id: str, entry: ManualInvoiceEntry) -> Invoice:
        """Store an invoice entered by hand. Same pipeline as ingest() minus extraction.

        Raises:
            InvalidInputError: Tenant id rejected.
            FatalPipelineError: Summarization failed.
            StorageError: The record could not be written.
        """
        validate_tenant_id(tenant_id)
        vendor = entry.vendor
        date = self._dates.normalize(entry.date, context=f"tenant {tenant_id}, manual entry")
        self._check_total(tenant_id, "manual entry", entry.total, entry.line_items)
        derived = await self._derive(
            tenant_id, vendor, date, entry.total, entry.line_items,
            explicit_categories=entry.categories,
            explicit_recurrence=entry.is_monthly_recurring,
        )
        return await self._insert(
            tenant_id=tenant_id,
            file_name=f"Manual Entry - {vendor}",
            vendor=vendor,
            date=date,
            total=entry.total,
            line_items=entry.line_items,
            derived=derived,
            source_file_uri=None,
        )

    ##########################################
    ############### MUTATIONS ################
    ##########################################

    async def update_manual(self, tenant_id: str, invoice_id: str, entry: ManualInvoiceEntry) -> Invoice:
        """Replace the user-editable fields of an invoice and re-derive summary and embedding.

        fileName, uploadedAt and sourceFileUri are preserved.

        Raises:
            InvalidInputError: Tenant or invoice id rejected.
            NotFoundError: No visible invoice with that id for the tenant.
            FatalPipelineError: Summarization failed; the stored record is unchanged.
            StorageError: The update could not be written.
        """
        store = await self._acquire()
        id_filter = self._visible_record_filter(store, tenant_id, invoice_id)
        await self._require_existing(store, id_filter, tenant_id, invoice_id)

        vendor = entry.vendor
        date = self._dates.normalize(entry.date, context=f"tenant {tenant_id}, invoice {invoice_id}")
        self._check_total(tenant_id, invoice_id, entry.total, entry.line_items)
        derived = await self._derive(
            tenant_id, vendor, date, entry.total, entry.line_items,
            explicit_categories=entry.categories,
            explicit_recurrence=entry.is_monthly_recurring,
        )

        fields = self._derived_fields(derived)
        to_set = {
            F_VENDOR: vendor,
            F_DATE: date,
            F_TOTAL: entry.total,
            F_LINE_ITEMS: [item.model_dump() for item in entry.line_items],
            **{key: value for key, value in fields.items() if value is not None},
        }
        update: dict = {"$set": to_set}
        to_unset = {key: "" for key, value in fields.items() if value is None}
        if to_unset:
            update["$unset"] = to_unset

        await self._update(store, id_filter, update, tenant_id, invoice_id)
        self.logging.info("Updated invoice %s for tenant=%s", invoice_id, tenant_id, color="green")
        return await self._reload(store, id_filter, tenant_id, invoice_id)

    async def soft_delete(self, tenant_id: str, invoice_id: str) -> None:
        """Mark an invoice as deleted. Deleting an already deleted invoice is a no-op.

        Raises:
            InvalidInputError: Tenant or invoice id rejected.
            NotFoundError: The invoice does not exist for the tenant.
            StorageError: The store could not be reached.
        """
        store = await self._acquire()
        id_filter = self._visible_record_filter(store, tenant_id, invoice_id)
        now = self._dates.now()
        result = await self._update(
            store, id_filter,
            {"$set": {F_IS_DELETED: True, F_DELETED_AT: store.encode_datetime(now)}},
            tenant_id, invoice_id,
        )
        if result.matched_count:
            self.logging.info("Soft-deleted invoice %s for tenant=%s", invoice_id, tenant_id)
            return

        owner_filter = {F_ID: store.encode_id(invoice_id), F_TENANT_ID: tenant_id}
        existing = await self._find_one(store, owner_filter, tenant_id, invoice_id, projection={F_ID: 1})
        if existing is None:
            raise NotFoundError(f"Invoice {invoice_id} not found for tenant {tenant_id}.")
        self.logging.debug("Invoice %s already deleted for tenant=%s", invoice_id, tenant_id)

    async def toggle_recurrence(self, tenant_id: str, invoice_id: str) -> Invoice:
        """Flip the recurring flag of an invoice (a missing flag counts as not recurring).

        Raises:
            InvalidInputError: Tenant or invoice id rejected.
            NotFoundError: No visible invoice with that id for the tenant.
            StorageError: The update could not be written.
        """
        store = await self._acquire()
        id_filter = self._visible_record_filter(store, tenant_id, invoice_id)
        current = await self._require_existing(store, id_filter, tenant_id, invoice_id)
        recurring = not bool(current.is_likely_recurring)
        reasoning = "Manually marked as recurring by user." if recurring else "Manually marked as not recurring by user."
        await self._update(
            store, id_filter,
            {"$set": {F_IS_LIKELY_RECURRING: recurring, F_RECURRENCE_REASONING: reasoning}},
            tenant_id, invoice_id,
        )
        return await self._reload(store, id_filter, tenant_id, invoice_id)

    ##########################################
    ################ STAGES ##################
    ##########################################

    async def _run_stage(self, stage: Stage, tenant_id: str, call: Awaitable[T]) -> StageResult[T]:
        """Await one stage call and capture its outcome instead of raising."""
        try:
            return StageResult(stage=stage, value=await call)
        except Exception as e:
            result: StageResult[T] = StageResult(stage=stage, error=e)
            if result.severity == StageSeverity.FATAL:
                self.logging.error("Stage '%s' failed for tenant=%s: %s", stage.value, tenant_id, e)
            else:
                self.logging.warning(
                    "Stage '%s' degraded for tenant=%s, using fallback: %s", stage.value, tenant_id, e, color="yellow"
                )
            return result

    async def _resolved(self, value: T) -> T:
        return value

    async def _derive(
        self,
        tenant_id: str,
        vendor: str,
        date: str,
        total: float,
        line_items: list[LineItem],
        explicit_categories: list[str] | None = None,
        explicit_recurrence: bool | None = None,
    ) -> DerivedFields:
        """Run summarization, then the three enrichments concurrently.

        Raises:
            FatalPipelineError: Summarization failed.
        """
        summary_result: StageResult[str] = await self._run_stage(
            Stage.SUMMARIZE, tenant_id, self._stages.summarize.run(vendor, date, total, line_items)
        )
        if not summary_result.ok:
            raise self._fatal(summary_result)
        summary = summary_result.value

        if explicit_categories is not None:
            categorize_call = self._resolved(explicit_categories)
        else:
            categorize_call = self._stages.categorize.run(vendor, line_items)
        if explicit_recurrence is not None:
            reasoning = "Marked as recurring by user." if explicit_recurrence else "Marked as not recurring by user."
            recurrence_call = self._resolved(
                RecurrenceOutput(is_likely_recurring=explicit_recurrence, reasoning=reasoning)
            )
        else:
            recurrence_call = self._stages.recurrence.run(vendor, line_items)

        categories_result, recurrence_result, embed_result = await asyncio.gather(
            self._run_stage(Stage.CATEGORIZE, tenant_id, categorize_call),
            self._run_stage(Stage.RECURRENCE, tenant_id, recurrence_call),
            self._run_stage(Stage.EMBED, tenant_id, self._stages.embed.run(summary)),
        )

        recurrence = recurrence_result.value_or(RecurrenceOutput(is_likely_recurring=False, reasoning=None))
        return DerivedFields(
            summary=summary,
            summary_embedding=embed_result.value if embed_result.ok and embed_result.value else None,
            categories=self._resolve_categories(categories_result, explicit=explicit_categories is not None),
            is_likely_recurring=bool(recurrence.is_likely_recurring),
            recurrence_reasoning=recurrence.reasoning,
        )

    @staticmethod
    def _resolve_categories(result: StageResult[list[str]], explicit: bool) -> list[str]:
        if not result.ok:
            return [UNCATEGORIZED]
        trimmed = [category.strip() for category in result.value or [] if isinstance(category, str) and category.strip()]
        if trimmed:
            return trimmed
        return [UNCATEGORIZED] if explicit else [GENERAL_EXPENSE]

    def _fatal(self, result: StageResult) -> FatalPipelineError:
        return FatalPipelineError(
            stage=result.stage.value,
            message=f"Stage '{result.stage.value}' failed: {result.error}",
            user_message=classify_upstream_error(result.stage, result.error),
        )

    ##########################################
    ############### HELPERS ##################
    ##########################################

    def _validate_file(self, file_bytes: bytes, mime_type: str, file_name: str) -> None:
        if not file_bytes:
            raise InvalidInputError(f"Empty upload {file_name!r}", user_message="No file uploaded or file is empty.")
        if mime_type not in self.allowed_mime_types:
            raise InvalidInputError(
                f"Unsupported file type {mime_type!r}",
                user_message=f"Unsupported file type: {mime_type}. Please upload a PDF, JPG, PNG or WEBP file.",
            )
        if len(file_bytes) > self.max_file_bytes:
            size_mb = len(file_bytes) / (1024 * 1024)
            max_mb = self.max_file_bytes / (1024 * 1024)
            raise InvalidInputError(
                f"File too large: {len(file_bytes)} bytes",
                user_message=f"File is too large ({size_mb:.2f}MB). Maximum size is {max_mb:g}MB.",
            )

    async def _store_original(self, tenant_id: str, file_bytes: bytes, mime_type: str, file_name: str) -> str | None:
        if self._blob is None:
            return None
        try:
            await self._blob.ensure_ready()
        except (httpx.HTTPError, ClientRequestError) as e:
            self.logging.error("Blob storage unavailable for tenant=%s: %s", tenant_id, e)
            raise BlobStorageError(f"Blob storage unavailable: {e}")
        safe_name = file_name.replace("/", "_").strip() or "invoice"
        path = f"invoices/{tenant_id}/{uuid.uuid4().hex}-{safe_name}"
        return await self._blob.do_upload(file_bytes, path, mime_type)

    def _check_total(self, tenant_id: str, source: str, total: float, line_items: list[LineItem]) -> None:
        """Log a diagnostic when the total and the line item sum disagree. Neither is changed."""
        if not line_items:
            return
        items_sum = sum(item.amount for item in line_items)
        if abs(items_sum - total) > TOTAL_DIVERGENCE_TOLERANCE:
            self.logging.warning(
                "Total %.2f differs from line item sum %.2f (tenant=%s, %s). Keeping both as extracted.",
                total, items_sum, tenant_id, source,
            )

    @staticmethod
    def _derived_fields(derived: DerivedFields) -> dict:
        return {
            F_SUMMARY: derived.summary,
            F_SUMMARY_EMBEDDING: derived.summary_embedding,
            F_CATEGORIES: derived.categories,
            F_IS_LIKELY_RECURRING: derived.is_likely_recurring,
            F_RECURRENCE_REASONING: derived.recurrence_reasoning,
        }

    async def _insert(
        self,
        tenant_id: str,
        file_name: str,
        vendor: str,
        date: str,
        total: float,
        line_items: list[LineItem],
        derived: DerivedFields,
        source_file_uri: str | None,
    ) -> Invoice:
        store = await self._acquire()
        document = {
            F_TENANT_ID: tenant_id,
            F_FILE_NAME: file_name,
            F_VENDOR: vendor,
            F_DATE: date,
            F_TOTAL: total,
            F_LINE_ITEMS: [item.model_dump() for item in line_items],
            F_UPLOADED_AT: store.encode_datetime(self._dates.now()),
            F_IS_DELETED: False,
        }
        document.update({key: value for key, value in self._derived_fields(derived).items() if value is not None})
        if source_file_uri:
            document[F_SOURCE_FILE_URI] = source_file_uri

        try:
            inserted_id = await store.do_insert_one(document)
        except STORE_ERRORS as e:
            self.logging.error("Failed to insert invoice for tenant=%s: %s", tenant_id, e)
            raise StorageError(f"Insert failed: {e}")

        self.logging.info(
            "Stored invoice %s (%s, %s, %.2f) for tenant=%s%s",
            inserted_id, vendor, date, total, tenant_id,
            "" if derived.summary_embedding else " without embedding",
            color="green",
        )
        return self._decoder.decode({**document, F_ID: inserted_id})

    async def _acquire(self) -> DocStoreClientInterface:
        try:
            return await self._pool.acquire()
        except STORE_ERRORS as e:
            self.logging.error("Document store unavailable: %s", e)
            raise StorageError(f"Document store unavailable: {e}", user_message="The invoice database is currently unavailable.")

    def _visible_record_filter(self, store: DocStoreClientInterface, tenant_id: str, invoice_id: str) -> dict:
        validate_tenant_id(tenant_id)
        validate_record_id(invoice_id, store.is_valid_id(invoice_id))
        return {F_ID: store.encode_id(invoice_id), F_TENANT_ID: tenant_id, F_IS_DELETED: {"$ne": True}}

    async def _find_one(self, store: DocStoreClientInterface, filter: dict, tenant_id: str, invoice_id: str, projection: dict | None = None) -> dict | None:
        try:
            return await store.do_find_one(filter, projection=projection)
        except STORE_ERRORS as e:
            self.logging.error("Failed to read invoice %s for tenant=%s: %s", invoice_id, tenant_id, e)
            raise StorageError(f"Find failed: {e}", user_message="Failed to load the invoice.")

    async def _update(self, store: DocStoreClientInterface, filter: dict, update: dict, tenant_id: str, invoice_id: str):
        try:
            return await store.do_update_one(filter, update)
        except STORE_ERRORS as e:
            self.logging.error("Failed to update invoice %s for tenant=%s: %s", invoice_id, tenant_id, e)
            raise StorageError(f"Update failed: {e}", user_message="Failed to update the invoice in the database.")

    async def _require_existing(self, store: DocStoreClientInterface, id_filter: dict, tenant_id: str, invoice_id: str) -> Invoice:
        raw = await self._find_one(store, id_filter, tenant_id, invoice_id)
        if raw is None:
            raise NotFoundError(f"Invoice {invoice_id} not found for tenant {tenant_id}.")
        invoice = self._decoder.decode(raw)
        if invoice.is_deleted or invoice.tenant_id != tenant_id:
            raise NotFoundError(f"Invoice {invoice_id} not visible for tenant {tenant_id}.")
        return invoice

    async def _reload(self, store: DocStoreClientInterface, id_filter: dict, tenant_id: str, invoice_id: str) -> Invoice:
        return await self._require_existing(store, id_filter, tenant_id, invoice_id)
