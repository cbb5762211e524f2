import logging
from datetime import datetime

import httpx
import pytest
import pytz
from pydantic import ValidationError

from server.core.IngestionService import (
    MSG_EXTRACTION_FAILED, MSG_SERVICE_UNAVAILABLE, MSG_UNREADABLE, MSG_UNSUPPORTED_FORMAT,
    IngestionService, classify_upstream_error,
)
from shared.ai.models.StageOutputs import ExtractionOutput
from shared.errors.ClientErrors import ClientRequestError, DocStoreError
from shared.errors.InvoiceErrors import BlobStorageError, FatalPipelineError, InvalidInputError, NotFoundError, StorageError
from shared.models.invoice import LineItem, ManualInvoiceEntry
from shared.models.pipeline import Stage
from tests.conftest import FIXED_NOW, OTHER_TENANT, TENANT, seed_invoice

PDF = b"%PDF-1.4 sample invoice"


class FakeBlobClient:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.uploads: list[tuple] = []

    async def ensure_ready(self) -> None:
        pass

    async def do_upload(self, content: bytes, path: str, content_type: str) -> str:
        if self.error is not None:
            raise self.error
        self.uploads.append((content, path, content_type))
        return f"gs://invoices-bucket/{path}"


@pytest.fixture
def service(helper_config, store_pool, stages, date_normalizer, decoder) -> IngestionService:
    return IngestionService(
        helper_config=helper_config,
        store_pool=store_pool,
        stages=stages,
        date_normalizer=date_normalizer,
        decoder=decoder,
    )


def manual_entry(**overrides) -> ManualInvoiceEntry:
    fields = {
        "vendor": "Office Depot",
        "date": "03/02/2024",
        "total": 42.5,
        "line_items": [LineItem(description="Printer paper", amount=42.5)],
    }
    fields.update(overrides)
    return ManualInvoiceEntry(**fields)


##########################################
############### INGEST ###################
##########################################

async def test_ingest_stores_one_fully_enriched_record(service, store, stages):
    invoice = await service.ingest(TENANT, PDF, "application/pdf", "acme.pdf")

    assert len(store.documents) == 1
    stored = store.documents[0]
    assert stored["tenantId"] == TENANT
    assert stored["isDeleted"] is False
    assert stored["summaryEmbedding"] == [0.6, 0.8, 0.0]

    assert invoice.tenant_id == TENANT
    assert invoice.file_name == "acme.pdf"
    assert invoice.vendor == "Acme Cloud"
    assert invoice.date == "2023-06-01"
    assert invoice.total == 100.0
    assert invoice.categories == ["Cloud Services", "Software"]
    assert invoice.is_likely_recurring is True
    assert invoice.recurrence_reasoning == "Monthly hosting plan."
    assert invoice.has_embedding()
    assert invoice.uploaded_at == FIXED_NOW
    assert invoice.source_file_uri is None
    assert stages.extract.calls == [(PDF, "application/pdf")]
    assert stages.embed.calls == [(stages.summarize.result,)]


async def test_ingest_without_vendor_creates_no_record(service, store, stages):
    stages.extract.error = ValueError("Extraction returned incomplete data (vendor=None, total=12.0).")

    with pytest.raises(FatalPipelineError) as exc_info:
        await service.ingest(TENANT, PDF, "application/pdf", "blank.pdf")

    assert exc_info.value.stage == "extract"
    assert exc_info.value.user_message == MSG_EXTRACTION_FAILED
    assert store.documents == []
    assert stages.summarize.calls == []


async def test_ingest_summarize_failure_is_fatal(service, store, stages):
    stages.summarize.error = httpx.ReadTimeout("timed out")

    with pytest.raises(FatalPipelineError) as exc_info:
        await service.ingest(TENANT, PDF, "application/pdf", "acme.pdf")

    assert exc_info.value.stage == "summarize"
    assert exc_info.value.user_message == MSG_SERVICE_UNAVAILABLE
    assert store.documents == []


async def test_ingest_embed_failure_still_stores_record_without_embedding(service, store, stages):
    stages.embed.error = ClientRequestError(url="http://ollama/api/embed", status_code=500, body="boom")

    invoice = await service.ingest(TENANT, PDF, "application/pdf", "acme.pdf")

    assert len(store.documents) == 1
    assert "summaryEmbedding" not in store.documents[0]
    assert not invoice.has_embedding()
    assert invoice.categories == ["Cloud Services", "Software"]


async def test_ingest_degraded_enrichments_use_fallbacks(service, store, stages):
    stages.categorize.error = ValueError("categorize reply is malformed")
    stages.recurrence.error = httpx.ConnectError("connection refused")

    invoice = await service.ingest(TENANT, PDF, "application/pdf", "acme.pdf")

    assert invoice.categories == ["Uncategorized"]
    assert invoice.is_likely_recurring is False
    assert invoice.recurrence_reasoning is None
    assert "recurrenceReasoning" not in store.documents[0]


async def test_ingest_blank_categories_become_general_expense(service, stages):
    stages.categorize.result = ["  ", ""]

    invoice = await service.ingest(TENANT, PDF, "application/pdf", "acme.pdf")

    assert invoice.categories == ["General Expense"]


async def test_ingest_unparsable_date_uses_processing_date(service, stages):
    stages.extract.result = ExtractionOutput(vendor="Acme", date="sometime last week", total=5.0, line_items=[])

    invoice = await service.ingest(TENANT, PDF, "application/pdf", "acme.pdf")

    assert invoice.date == "2024-03-15"


async def test_ingest_logs_total_divergence_without_changing_values(service, stages, caplog):
    stages.extract.result = ExtractionOutput(
        vendor="Acme",
        date="2024-01-05",
        total=120.0,
        line_items=[LineItem(description="Hosting", amount=100.0)],
    )

    with caplog.at_level(logging.WARNING):
        invoice = await service.ingest(TENANT, PDF, "application/pdf", "acme.pdf")

    assert invoice.total == 120.0
    assert invoice.line_items[0].amount == 100.0
    assert any("differs from line item sum" in record.getMessage() for record in caplog.records)


async def test_ingest_store_failure_raises_storage_error(service, store):
    store.fail_with = DocStoreError("insertOne", ConnectionError("connection refused"))

    with pytest.raises(StorageError):
        await service.ingest(TENANT, PDF, "application/pdf", "acme.pdf")


##########################################
############## VALIDATION ################
##########################################

@pytest.mark.parametrize(
    "tenant_id, content, mime_type, expected",
    [
        ("", PDF, "application/pdf", "User ID is missing or invalid"),
        ("bad tenant/../", PDF, "application/pdf", "User ID is missing or invalid"),
        (TENANT, b"", "application/pdf", "No file uploaded or file is empty."),
        (TENANT, PDF, "text/plain", "Unsupported file type: text/plain"),
    ],
)
async def test_ingest_rejects_invalid_input_before_any_ai_call(service, stages, store, tenant_id, content, mime_type, expected):
    with pytest.raises(InvalidInputError) as exc_info:
        await service.ingest(tenant_id, content, mime_type, "file")

    assert expected in exc_info.value.user_message
    assert stages.extract.calls == []
    assert store.documents == []


async def test_ingest_rejects_oversized_file(service, stages):
    content = b"x" * (10 * 1024 * 1024 + 1)

    with pytest.raises(InvalidInputError) as exc_info:
        await service.ingest(TENANT, content, "image/png", "huge.png")

    assert exc_info.value.user_message == "File is too large (10.00MB). Maximum size is 10MB."
    assert stages.extract.calls == []


async def test_ingest_size_limit_is_configurable(monkeypatch, helper_config, store_pool, stages, date_normalizer, decoder):
    monkeypatch.setenv("INGEST_MAX_FILE_BYTES", "10")
    service = IngestionService(helper_config, store_pool, stages, date_normalizer, decoder)

    with pytest.raises(InvalidInputError):
        await service.ingest(TENANT, b"01234567890", "image/png", "small.png")


##########################################
############# BLOB STORAGE ###############
##########################################

async def test_ingest_uploads_original_file_when_blob_storage_configured(helper_config, store_pool, stages, date_normalizer, decoder):
    blob = FakeBlobClient()
    service = IngestionService(helper_config, store_pool, stages, date_normalizer, decoder, blob_client=blob)

    invoice = await service.ingest(TENANT, PDF, "application/pdf", "acme.pdf")

    content, path, content_type = blob.uploads[0]
    assert content == PDF
    assert content_type == "application/pdf"
    assert path.startswith(f"invoices/{TENANT}/") and path.endswith("-acme.pdf")
    assert invoice.source_file_uri == f"gs://invoices-bucket/{path}"


async def test_ingest_blob_failure_aborts_before_extraction(helper_config, store_pool, store, stages, date_normalizer, decoder):
    blob = FakeBlobClient(error=BlobStorageError("upload failed"))
    service = IngestionService(helper_config, store_pool, stages, date_normalizer, decoder, blob_client=blob)

    with pytest.raises(BlobStorageError):
        await service.ingest(TENANT, PDF, "application/pdf", "acme.pdf")

    assert stages.extract.calls == []
    assert store.documents == []


##########################################
############ MANUAL ENTRIES ##############
##########################################

async def test_ingest_manual_skips_extraction_and_uses_explicit_values(service, stages):
    entry = manual_entry(categories=["Office Supplies", " "], is_monthly_recurring=False)

    invoice = await service.ingest_manual(TENANT, entry)

    assert invoice.file_name == "Manual Entry - Office Depot"
    assert invoice.date == "2024-03-02"
    assert invoice.categories == ["Office Supplies"]
    assert invoice.is_likely_recurring is False
    assert invoice.recurrence_reasoning == "Marked as not recurring by user."
    assert stages.extract.calls == []
    assert stages.categorize.calls == []
    assert stages.recurrence.calls == []
    assert len(stages.summarize.calls) == 1


async def test_ingest_manual_empty_explicit_categories_become_uncategorized(service):
    invoice = await service.ingest_manual(TENANT, manual_entry(categories=[" "]))

    assert invoice.categories == ["Uncategorized"]


async def test_ingest_manual_without_explicit_values_runs_enrichments(service, stages):
    invoice = await service.ingest_manual(TENANT, manual_entry())

    assert invoice.categories == ["Cloud Services", "Software"]
    assert invoice.is_likely_recurring is True
    assert len(stages.categorize.calls) == 1
    assert len(stages.recurrence.calls) == 1


async def test_ingest_manual_stores_trimmed_vendor(service, store):
    invoice = await service.ingest_manual(TENANT, manual_entry(vendor="  Office Depot  ", date=" 03/02/2024 "))

    stored = store.get(invoice.id)
    assert stored["vendor"] == "Office Depot"
    assert stored["fileName"] == "Manual Entry - Office Depot"
    assert stored["date"] == "2024-03-02"


@pytest.mark.parametrize("field", ["vendor", "date"])
def test_manual_entry_rejects_whitespace_only_text(field):
    with pytest.raises(ValidationError, match="must not be blank"):
        manual_entry(**{field: " \t "})


async def test_update_manual_replaces_fields_and_preserves_origin(service, store, stages):
    record_id = seed_invoice(store, sourceFileUri="gs://bucket/invoices/tenant-a/x.pdf")
    stages.embed.error = httpx.ReadTimeout("timed out")

    invoice = await service.update_manual(TENANT, record_id, manual_entry(is_monthly_recurring=True))

    stored = store.get(record_id)
    assert stored["vendor"] == "Office Depot"
    assert stored["date"] == "2024-03-02"
    assert stored["lineItems"] == [{"description": "Printer paper", "amount": 42.5}]
    assert stored["fileName"] == "invoice.pdf"
    assert stored["uploadedAt"] == datetime(2024, 2, 10, 9, 0, tzinfo=pytz.utc)
    assert stored["sourceFileUri"] == "gs://bucket/invoices/tenant-a/x.pdf"
    assert "summaryEmbedding" not in stored
    assert invoice.recurrence_reasoning == "Marked as recurring by user."
    assert invoice.summary == stages.summarize.result


async def test_update_manual_summary_failure_leaves_record_untouched(service, store, stages):
    record_id = seed_invoice(store)
    before = dict(store.get(record_id))
    stages.summarize.error = ValueError("AI summarization failed: no summary received from the model.")

    with pytest.raises(FatalPipelineError):
        await service.update_manual(TENANT, record_id, manual_entry())

    assert store.get(record_id) == before


async def test_update_manual_of_other_tenant_is_not_found(service, store):
    record_id = seed_invoice(store, tenant_id=OTHER_TENANT)

    with pytest.raises(NotFoundError):
        await service.update_manual(TENANT, record_id, manual_entry())


##########################################
########### LIFECYCLE CHANGES ############
##########################################

async def test_soft_delete_twice_succeeds(service, store):
    record_id = seed_invoice(store)

    await service.soft_delete(TENANT, record_id)
    first_deleted_at = store.get(record_id)["deletedAt"]
    await service.soft_delete(TENANT, record_id)

    stored = store.get(record_id)
    assert stored["isDeleted"] is True
    assert stored["deletedAt"] == first_deleted_at


async def test_soft_delete_unknown_or_foreign_id_is_not_found(service, store):
    foreign_id = seed_invoice(store, tenant_id=OTHER_TENANT)

    with pytest.raises(NotFoundError):
        await service.soft_delete(TENANT, "0123456789abcdef01234567")
    with pytest.raises(NotFoundError):
        await service.soft_delete(TENANT, foreign_id)
    assert store.get(foreign_id)["isDeleted"] is False


async def test_soft_delete_rejects_malformed_id(service):
    with pytest.raises(InvalidInputError) as exc_info:
        await service.soft_delete(TENANT, "not-an-id")

    assert exc_info.value.user_message == "Invalid invoice ID format."


async def test_toggle_recurrence_flips_flag(service, store):
    record_id = seed_invoice(store, isLikelyRecurring=None, recurrenceReasoning=None)

    first = await service.toggle_recurrence(TENANT, record_id)
    second = await service.toggle_recurrence(TENANT, record_id)

    assert first.is_likely_recurring is True
    assert first.recurrence_reasoning == "Manually marked as recurring by user."
    assert second.is_likely_recurring is False
    assert second.recurrence_reasoning == "Manually marked as not recurring by user."


async def test_toggle_recurrence_on_deleted_invoice_is_not_found(service, store):
    record_id = seed_invoice(store, isDeleted=True)

    with pytest.raises(NotFoundError):
        await service.toggle_recurrence(TENANT, record_id)


##########################################
########## ERROR CLASSIFICATION ##########
##########################################

@pytest.mark.parametrize(
    "error, expected",
    [
        (httpx.ConnectTimeout("timeout"), MSG_SERVICE_UNAVAILABLE),
        (ValueError("Deadline exceeded while waiting for model"), MSG_SERVICE_UNAVAILABLE),
        (ClientRequestError(url="http://llm", status_code=503, body="busy"), MSG_SERVICE_UNAVAILABLE),
        (ValueError("Invalid media type image/tiff"), MSG_UNSUPPORTED_FORMAT),
        (ValueError("LLM returned malformed JSON: Expecting value"), MSG_UNREADABLE),
        (ValueError("Extraction returned incomplete data (vendor=None, total=None)."), MSG_EXTRACTION_FAILED),
    ],
)
def test_classify_upstream_error(error, expected):
    assert classify_upstream_error(Stage.EXTRACT, error) == expected
