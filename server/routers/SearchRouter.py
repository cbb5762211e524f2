from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import get_tenant_id, verify_api_key
from server.models.requests import SearchRequest
from server.models.responses import SearchResponse

router = APIRouter(prefix="/search", tags=["search"])


@router.post("")
async def search_invoices(
    request: Request,
    body: SearchRequest,
    tenant_id: str = Depends(get_tenant_id),
    _: None = Depends(verify_api_key),
) -> SearchResponse:
    """Semantic search over the tenant's invoice summaries.

    Args:
        request (Request): FastAPI request (provides app.state.retrieval_service).
        body (SearchRequest): JSON body with the query text and an optional limit.
        tenant_id (str): Owning tenant from the X-Tenant-Id header.
        _ (None): Auth dependency result (unused).

    Returns:
        SearchResponse: Invoices ranked by similarity, or all invoices for an empty query.
    """
    retrieval_service = request.app.state.retrieval_service
    return await retrieval_service.search_semantic(tenant_id, body.query, limit=body.limit)
