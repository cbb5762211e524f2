"""Canonical invoice entity and the field names used for persisted documents."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

# Stored document field names
F_ID = "_id"
F_TENANT_ID = "tenantId"
F_FILE_NAME = "fileName"
F_VENDOR = "vendor"
F_DATE = "date"
F_TOTAL = "total"
F_LINE_ITEMS = "lineItems"
F_SUMMARY = "summary"
F_SUMMARY_EMBEDDING = "summaryEmbedding"
F_CATEGORIES = "categories"
F_IS_LIKELY_RECURRING = "isLikelyRecurring"
F_RECURRENCE_REASONING = "recurrenceReasoning"
F_UPLOADED_AT = "uploadedAt"
F_SOURCE_FILE_URI = "sourceFileUri"
F_IS_DELETED = "isDeleted"
F_DELETED_AT = "deletedAt"

# Field names written by older versions of the application
F_LEGACY_TENANT_ID = "userId"
F_LEGACY_SOURCE_FILE_URI = "gcsFileUri"

# Line item field names
F_ITEM_DESCRIPTION = "description"
F_ITEM_AMOUNT = "amount"

UNCATEGORIZED = "Uncategorized"
GENERAL_EXPENSE = "General Expense"


class LineItem(BaseModel):
    description: str
    amount: float


class Invoice(BaseModel):
    """A fully decoded invoice. Every field holds a validated value or an explicit default."""

    id: str
    tenant_id: str
    file_name: str
    vendor: str
    date: str
    total: float
    line_items: list[LineItem] = []
    summary: str
    summary_embedding: list[float] | None = Field(default=None, repr=False, exclude=True)
    categories: list[str] | None = None
    is_likely_recurring: bool | None = None
    recurrence_reasoning: str | None = None
    uploaded_at: datetime
    source_file_uri: str | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None

    def has_embedding(self) -> bool:
        return bool(self.summary_embedding)

    def month_key(self) -> str:
        """Returns the "YYYY-MM" part of the invoice date."""
        return self.date[:7]


class ManualInvoiceEntry(BaseModel):
    """Invoice data supplied directly by the user instead of extracted from a file.

    Attributes:
        categories: Explicit categories. When given, categorization is skipped.
        is_monthly_recurring: Explicit recurrence flag. When given, recurrence detection is skipped.
    """

    vendor: str = Field(min_length=1)
    date: str = Field(min_length=1)
    total: float = Field(ge=0)
    line_items: list[LineItem] = Field(min_length=1)
    categories: list[str] | None = None
    is_monthly_recurring: bool | None = None

    @field_validator("vendor", "date")
    @classmethod
    def strip_required_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped
