from fastapi import APIRouter, Depends, File, Request, UploadFile

from server.dependencies.auth import get_tenant_id, verify_api_key
from server.models.responses import InvoiceListResponse, InvoiceSearchHit, StatusResponse
from shared.models.invoice import Invoice, ManualInvoiceEntry

router = APIRouter(prefix="/invoices", tags=["invoices"], dependencies=[Depends(verify_api_key)])


##########################################
################ WRITES ##################
##########################################

@router.post("/upload", status_code=201)
async def upload_invoice(
    request: Request,
    file: UploadFile = File(...),
    tenant_id: str = Depends(get_tenant_id),
) -> Invoice:
    """Run the ingestion pipeline on an uploaded invoice file.

    Args:
        request (Request): FastAPI request (provides app.state.ingestion_service).
        file (UploadFile): The invoice document (PDF, JPEG, PNG or WEBP).
        tenant_id (str): Owning tenant from the X-Tenant-Id header.

    Returns:
        Invoice: The stored invoice.
    """
    content = await file.read()
    return await request.app.state.ingestion_service.ingest(
        tenant_id=tenant_id,
        file_bytes=content,
        mime_type=file.content_type or "",
        file_name=file.filename or "invoice",
    )


@router.post("/manual", status_code=201)
async def create_manual_invoice(request: Request, body: ManualInvoiceEntry, tenant_id: str = Depends(get_tenant_id)) -> Invoice:
    return await request.app.state.ingestion_service.ingest_manual(tenant_id, body)


@router.put("/{invoice_id}")
async def update_invoice(
    request: Request, invoice_id: str, body: ManualInvoiceEntry, tenant_id: str = Depends(get_tenant_id)
) -> Invoice:
    return await request.app.state.ingestion_service.update_manual(tenant_id, invoice_id, body)


@router.delete("/{invoice_id}")
async def delete_invoice(request: Request, invoice_id: str, tenant_id: str = Depends(get_tenant_id)) -> StatusResponse:
    await request.app.state.ingestion_service.soft_delete(tenant_id, invoice_id)
    return StatusResponse(status="deleted", invoice_id=invoice_id)


@router.post("/{invoice_id}/toggle-recurrence")
async def toggle_recurrence(request: Request, invoice_id: str, tenant_id: str = Depends(get_tenant_id)) -> Invoice:
    return await request.app.state.ingestion_service.toggle_recurrence(tenant_id, invoice_id)


##########################################
################ READS ###################
##########################################

@router.get("")
async def list_invoices(request: Request, tenant_id: str = Depends(get_tenant_id)) -> InvoiceListResponse:
    invoices = await request.app.state.retrieval_service.list_all(tenant_id)
    return InvoiceListResponse(invoices=invoices, total=len(invoices))


@router.get("/month/{year}/{month}")
async def list_invoices_by_month(
    request: Request, year: int, month: int, tenant_id: str = Depends(get_tenant_id)
) -> InvoiceListResponse:
    invoices = await request.app.state.retrieval_service.list_by_month(tenant_id, year, month)
    return InvoiceListResponse(invoices=invoices, total=len(invoices))


@router.get("/{invoice_id}")
async def get_invoice(request: Request, invoice_id: str, tenant_id: str = Depends(get_tenant_id)) -> Invoice:
    return await request.app.state.retrieval_service.get_by_id(tenant_id, invoice_id)


@router.get("/{invoice_id}/similar")
async def find_similar_invoices(
    request: Request, invoice_id: str, tenant_id: str = Depends(get_tenant_id)
) -> list[InvoiceSearchHit]:
    """Invoices whose summaries are closest to the given one, excluding itself."""
    return await request.app.state.retrieval_service.find_similar(tenant_id, invoice_id)
