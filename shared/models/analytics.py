from pydantic import BaseModel


class SpendingByCategory(BaseModel):
    category: str
    total_spent: float
    invoice_count: int


class MonthlySpending(BaseModel):
    month: str
    total_spent: float
    invoice_count: int


class OverallSpendingMetrics(BaseModel):
    total_overall_spending: float
    active_month_count: int
    average_monthly_spending: float
    first_month_active: str | None = None
    last_month_active: str | None = None
