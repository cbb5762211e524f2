from pydantic import BaseModel

from shared.models.invoice import Invoice


class InvoiceSearchHit(BaseModel):
    """A single invoice returned from a similarity search.

    score is None when the query degraded to a plain listing.
    """

    invoice: Invoice
    score: float | None = None


class SearchResponse(BaseModel):
    query: str
    results: list[InvoiceSearchHit]
    total: int


class InvoiceListResponse(BaseModel):
    invoices: list[Invoice]
    total: int


class StatusResponse(BaseModel):
    status: str
    invoice_id: str
