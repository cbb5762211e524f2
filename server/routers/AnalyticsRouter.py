from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import get_tenant_id, verify_api_key
from shared.models.analytics import MonthlySpending, OverallSpendingMetrics, SpendingByCategory

router = APIRouter(prefix="/analytics", tags=["analytics"], dependencies=[Depends(verify_api_key)])


@router.get("/categories")
async def spending_by_category(request: Request, tenant_id: str = Depends(get_tenant_id)) -> list[SpendingByCategory]:
    """Spending per category. Invoices with several categories count once per category."""
    return await request.app.state.analytics_service.spend_by_category(tenant_id)


@router.get("/monthly")
async def spending_by_month(request: Request, tenant_id: str = Depends(get_tenant_id)) -> list[MonthlySpending]:
    return await request.app.state.analytics_service.spend_by_month(tenant_id)


@router.get("/overview")
async def spending_overview(request: Request, tenant_id: str = Depends(get_tenant_id)) -> OverallSpendingMetrics:
    return await request.app.state.analytics_service.overall_metrics(tenant_id)
