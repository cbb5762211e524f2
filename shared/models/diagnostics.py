from pydantic import BaseModel

from shared.models.invoice import Invoice


class DecodeDiagnostic(BaseModel):
    """One anomaly found while decoding a stored record.

    Attributes:
        record_id: The id of the stored record (or the fabricated sentinel id).
        tenant_id: The owning tenant, if it could be determined.
        field: The offending field name ("*" when the whole document is unusable).
        reason: Human-readable description of the anomaly and the applied default.
    """

    record_id: str
    tenant_id: str | None = None
    field: str
    reason: str


class DecodeResult(BaseModel):
    invoice: Invoice
    diagnostics: list[DecodeDiagnostic] = []

    @property
    def is_clean(self) -> bool:
        return not self.diagnostics
