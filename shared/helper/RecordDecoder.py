"""Defensive decoding of stored invoice documents into the canonical Invoice entity.

Stored records drift: fields go missing, get written with the wrong type by
older code, or arrive wrapped in Extended JSON (exports, older API records)
rather than as native BSON values from the driver. decode() never raises. Every
field ends up either as a validated value of its declared type or as an
explicit default, and each substitution is reported as a DecodeDiagnostic
and logged.
"""

import math
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import pytz
from bson import Decimal128, ObjectId

from shared.helper.DateNormalizer import DateNormalizer
from shared.helper.HelperConfig import HelperConfig
from shared.models.diagnostics import DecodeDiagnostic, DecodeResult
from shared.models.invoice import (
    F_CATEGORIES, F_DATE, F_DELETED_AT, F_FILE_NAME, F_ID, F_IS_DELETED,
    F_IS_LIKELY_RECURRING, F_ITEM_AMOUNT, F_ITEM_DESCRIPTION, F_LEGACY_SOURCE_FILE_URI,
    F_LEGACY_TENANT_ID, F_LINE_ITEMS, F_RECURRENCE_REASONING, F_SOURCE_FILE_URI,
    F_SUMMARY, F_SUMMARY_EMBEDDING, F_TENANT_ID, F_TOTAL, F_UPLOADED_AT, F_VENDOR,
    Invoice, LineItem,
)

EPOCH = datetime(1970, 1, 1, tzinfo=pytz.utc)

DEFAULT_FILE_NAME = "Unknown File"
DEFAULT_VENDOR = "Unknown Vendor"
DEFAULT_SUMMARY = "No summary available."
DEFAULT_ITEM_DESCRIPTION = "Unknown Item"
UNDECODABLE_FILE_NAME = "Undecodable Record"

_MISSING = object()
_NUMBER_WRAPPERS = ("$numberDouble", "$numberDecimal", "$numberInt", "$numberLong")


class _DecodeContext:
    """Collects diagnostics for one record."""

    def __init__(self, record_id: str, tenant_id: str | None = None):
        self.record_id = record_id
        self.tenant_id = tenant_id
        self.diagnostics: list[DecodeDiagnostic] = []

    def report(self, field: str, reason: str) -> None:
        self.diagnostics.append(
            DecodeDiagnostic(record_id=self.record_id, tenant_id=self.tenant_id, field=field, reason=reason)
        )


class RecordDecoder:
    def __init__(self, helper_config: HelperConfig, date_normalizer: DateNormalizer):
        self.logging = helper_config.get_logger()
        self._dates = date_normalizer

    ##########################################
    ################ DECODE ##################
    ##########################################

    def decode(self, raw_document: Any) -> Invoice:
        return self.decode_with_diagnostics(raw_document).invoice

    def decode_with_diagnostics(self, raw_document: Any) -> DecodeResult:
        """Map a raw stored document into an Invoice plus the list of anomalies found."""
        if not isinstance(raw_document, dict):
            result = self._sentinel(raw_document)
        else:
            result = self._decode_document(raw_document)
        for diagnostic in result.diagnostics:
            self.logging.warning(
                "Decode anomaly for tenant=%s record=%s field=%s: %s",
                diagnostic.tenant_id, diagnostic.record_id, diagnostic.field, diagnostic.reason,
            )
        return result

    def decode_many(self, raw_documents: list[Any]) -> list[Invoice]:
        return [self.decode(raw) for raw in raw_documents]

    def _sentinel(self, raw_document: Any) -> DecodeResult:
        record_id = uuid.uuid4().hex
        ctx = _DecodeContext(record_id)
        ctx.report("*", f"stored value is not a document ({type(raw_document).__name__}); replaced by a deleted sentinel")
        invoice = Invoice(
            id=record_id,
            tenant_id="",
            file_name=UNDECODABLE_FILE_NAME,
            vendor=DEFAULT_VENDOR,
            date=self._dates.today(),
            total=0.0,
            line_items=[],
            summary=f"This record could not be decoded: expected a document but found {type(raw_document).__name__}.",
            uploaded_at=EPOCH,
            is_deleted=True,
            deleted_at=EPOCH,
        )
        return DecodeResult(invoice=invoice, diagnostics=ctx.diagnostics)

    def _decode_document(self, doc: dict) -> DecodeResult:
        record_id = self._decode_id(doc.get(F_ID, _MISSING))
        ctx = _DecodeContext(record_id or "")
        if record_id is None:
            record_id = uuid.uuid4().hex
            ctx.record_id = record_id
            ctx.report(F_ID, "missing or invalid id; generated a new one")

        tenant_id = self._decode_tenant(doc, ctx)
        ctx.tenant_id = tenant_id or None

        invoice = Invoice(
            id=record_id,
            tenant_id=tenant_id,
            file_name=self._required_string(doc, F_FILE_NAME, DEFAULT_FILE_NAME, ctx),
            vendor=self._required_string(doc, F_VENDOR, DEFAULT_VENDOR, ctx),
            date=self._decode_date(doc, ctx),
            total=self._decode_amount(doc.get(F_TOTAL, _MISSING), F_TOTAL, ctx),
            line_items=self._decode_line_items(doc.get(F_LINE_ITEMS, _MISSING), ctx),
            summary=self._required_string(doc, F_SUMMARY, DEFAULT_SUMMARY, ctx),
            summary_embedding=self._decode_embedding(doc.get(F_SUMMARY_EMBEDDING, _MISSING), ctx),
            categories=self._decode_categories(doc.get(F_CATEGORIES, _MISSING), ctx),
            is_likely_recurring=self._optional_bool(doc, F_IS_LIKELY_RECURRING, ctx),
            recurrence_reasoning=self._optional_string(doc.get(F_RECURRENCE_REASONING, _MISSING), F_RECURRENCE_REASONING, ctx),
            uploaded_at=self._decode_uploaded_at(doc.get(F_UPLOADED_AT, _MISSING), ctx),
            source_file_uri=self._decode_source_uri(doc, ctx),
            is_deleted=self._decode_is_deleted(doc.get(F_IS_DELETED, _MISSING), ctx),
            deleted_at=self._decode_optional_datetime(doc.get(F_DELETED_AT, _MISSING), F_DELETED_AT, ctx),
        )
        return DecodeResult(invoice=invoice, diagnostics=ctx.diagnostics)

    ##########################################
    ############ FIELD DECODERS ##############
    ##########################################

    @staticmethod
    def _decode_id(value: Any) -> str | None:
        if isinstance(value, ObjectId):
            return str(value)
        if isinstance(value, dict):
            value = value.get("$oid")
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def _decode_tenant(self, doc: dict, ctx: _DecodeContext) -> str:
        value = doc.get(F_TENANT_ID, _MISSING)
        if value is _MISSING and F_LEGACY_TENANT_ID in doc:
            value = doc[F_LEGACY_TENANT_ID]
        tenant = self._decode_id(value)
        if tenant is None:
            ctx.report(F_TENANT_ID, "missing or invalid tenant id; record is not owned by any tenant")
            return ""
        return tenant

    @staticmethod
    def _required_string(doc: dict, field: str, default: str, ctx: _DecodeContext) -> str:
        value = doc.get(field, _MISSING)
        if isinstance(value, str) and value.strip():
            return value
        ctx.report(field, f"{_describe(value)}; using {default!r}")
        return default

    @staticmethod
    def _optional_string(value: Any, field: str, ctx: _DecodeContext) -> str | None:
        if value is _MISSING or value is None:
            return None
        if isinstance(value, str):
            return value
        ctx.report(field, f"{_describe(value)}; dropped")
        return None

    @staticmethod
    def _optional_bool(doc: dict, field: str, ctx: _DecodeContext) -> bool | None:
        value = doc.get(field, _MISSING)
        if value is _MISSING or value is None:
            return None
        if isinstance(value, bool):
            return value
        ctx.report(field, f"{_describe(value)}; dropped")
        return None

    def _decode_date(self, doc: dict, ctx: _DecodeContext) -> str:
        value = doc.get(F_DATE, _MISSING)
        if DateNormalizer.is_canonical(value):
            return value
        if isinstance(value, dict) and "$date" in value:
            parsed = _parse_datetime(value)
            normalized = parsed.strftime("%Y-%m-%d") if parsed else self._dates.normalize(None, context=f"record {ctx.record_id}")
        else:
            normalized = self._dates.normalize(None if value is _MISSING else value, context=f"record {ctx.record_id}")
        ctx.report(F_DATE, f"{_describe(value)}; normalized to {normalized}")
        return normalized

    @staticmethod
    def _decode_amount(value: Any, field: str, ctx: _DecodeContext) -> float:
        amount = _as_number(value)
        if amount is None:
            ctx.report(field, f"{_describe(value)}; using 0")
            return 0.0
        if amount < 0:
            ctx.report(field, f"negative amount {amount}; using 0")
            return 0.0
        return amount

    def _decode_line_items(self, value: Any, ctx: _DecodeContext) -> list[LineItem]:
        if not isinstance(value, list):
            ctx.report(F_LINE_ITEMS, f"{_describe(value)}; using an empty list")
            return []
        items: list[LineItem] = []
        for index, element in enumerate(value):
            field = f"{F_LINE_ITEMS}[{index}]"
            if not isinstance(element, dict):
                ctx.report(field, f"{_describe(element)}; using a default line item")
                items.append(LineItem(description=DEFAULT_ITEM_DESCRIPTION, amount=0.0))
                continue
            description = element.get(F_ITEM_DESCRIPTION, _MISSING)
            if not isinstance(description, str) or not description.strip():
                ctx.report(f"{field}.{F_ITEM_DESCRIPTION}", f"{_describe(description)}; using {DEFAULT_ITEM_DESCRIPTION!r}")
                description = DEFAULT_ITEM_DESCRIPTION
            amount = self._decode_amount(element.get(F_ITEM_AMOUNT, _MISSING), f"{field}.{F_ITEM_AMOUNT}", ctx)
            items.append(LineItem(description=description, amount=amount))
        return items

    @staticmethod
    def _decode_embedding(value: Any, ctx: _DecodeContext) -> list[float] | None:
        if value is _MISSING or value is None:
            return None
        if not isinstance(value, list) or not value:
            ctx.report(F_SUMMARY_EMBEDDING, f"{_describe(value)}; dropped")
            return None
        vector = [_as_number(element) for element in value]
        if any(element is None for element in vector):
            ctx.report(F_SUMMARY_EMBEDDING, "contains non-numeric elements; dropped")
            return None
        return vector

    @staticmethod
    def _decode_categories(value: Any, ctx: _DecodeContext) -> list[str] | None:
        if value is _MISSING or value is None:
            return None
        if not isinstance(value, list):
            ctx.report(F_CATEGORIES, f"{_describe(value)}; dropped")
            return None
        categories = []
        for element in value:
            if not isinstance(element, str):
                ctx.report(F_CATEGORIES, f"non-string category {element!r} dropped")
                continue
            if element.strip():
                categories.append(element.strip())
        return categories

    @staticmethod
    def _decode_uploaded_at(value: Any, ctx: _DecodeContext) -> datetime:
        parsed = _parse_datetime(value)
        if parsed is None:
            ctx.report(F_UPLOADED_AT, f"{_describe(value)}; using the epoch")
            return EPOCH
        return parsed

    @staticmethod
    def _decode_optional_datetime(value: Any, field: str, ctx: _DecodeContext) -> datetime | None:
        if value is _MISSING or value is None:
            return None
        parsed = _parse_datetime(value)
        if parsed is None:
            ctx.report(field, f"{_describe(value)}; dropped")
        return parsed

    def _decode_source_uri(self, doc: dict, ctx: _DecodeContext) -> str | None:
        value = doc.get(F_SOURCE_FILE_URI, _MISSING)
        if value is _MISSING:
            value = doc.get(F_LEGACY_SOURCE_FILE_URI, _MISSING)
        return self._optional_string(value, F_SOURCE_FILE_URI, ctx)

    @staticmethod
    def _decode_is_deleted(value: Any, ctx: _DecodeContext) -> bool:
        if value is _MISSING or value is None:
            return False
        if isinstance(value, bool):
            return value
        ctx.report(F_IS_DELETED, f"{_describe(value)}; treating as not deleted")
        return False


##########################################
########### VALUE COERCION ###############
##########################################

def _describe(value: Any) -> str:
    if value is _MISSING:
        return "missing"
    if value is None:
        return "null"
    return f"invalid value of type {type(value).__name__}"


def _as_number(value: Any) -> float | None:
    """Return value as a finite float when it is a number or an Extended JSON number wrapper."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal128):
        value = value.to_decimal()
    if isinstance(value, dict) and len(value) == 1:
        key, inner = next(iter(value.items()))
        if key not in _NUMBER_WRAPPERS or not isinstance(inner, str):
            return None
        try:
            value = Decimal(inner)
        except InvalidOperation:
            return None
    if isinstance(value, (int, float, Decimal)):
        try:
            number = float(value)
        except (ValueError, OverflowError):
            return None
        return number if math.isfinite(number) else None
    return None


def _parse_datetime(value: Any) -> datetime | None:
    """Accept datetime objects, ISO strings, epoch milliseconds and {"$date": ...} wrappers."""
    if isinstance(value, dict) and "$date" in value:
        value = value["$date"]
        if isinstance(value, dict):
            value = _as_number(value)
    if isinstance(value, datetime):
        return value if value.tzinfo else pytz.utc.localize(value)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else pytz.utc.localize(parsed)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=pytz.utc)
        except (OverflowError, OSError, ValueError):
            return None
    return None
