from collections import defaultdict

from shared.clients.docstore.DocStoreClientManager import DocStoreClientManager
from shared.errors.ClientErrors import DocStoreError
from shared.errors.InvoiceErrors import StorageError
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperValidation import validate_tenant_id
from shared.helper.RecordDecoder import RecordDecoder
from shared.models.analytics import MonthlySpending, OverallSpendingMetrics, SpendingByCategory
from shared.models.invoice import F_IS_DELETED, F_TENANT_ID, Invoice


class AnalyticsService:
    """Spending aggregates over a tenant's visible invoices.

    Grouping happens on decoded records, so malformed stored values contribute
    their decoded defaults instead of breaking the sums.
    """

    def __init__(self, helper_config: HelperConfig, store_pool: DocStoreClientManager, decoder: RecordDecoder) -> None:
        self.logging = helper_config.get_logger()
        self._pool = store_pool
        self._decoder = decoder

    async def spend_by_category(self, tenant_id: str) -> list[SpendingByCategory]:
        """Spending per category, highest first.

        An invoice contributes its full total to every category it carries, so the
        category sums add up to more than the invoice totals when invoices have
        several categories.
        """
        sums: dict[str, float] = defaultdict(float)
        counts: dict[str, int] = defaultdict(int)
        for invoice in await self._load(tenant_id):
            # unwind
            for category in invoice.categories or []:
                sums[category] += invoice.total
                counts[category] += 1

        result = [
            SpendingByCategory(category=category, total_spent=round(total, 2), invoice_count=counts[category])
            for category, total in sums.items()
        ]
        result.sort(key=lambda entry: (-entry.total_spent, entry.category))
        return result

    async def spend_by_month(self, tenant_id: str) -> list[MonthlySpending]:
        """Spending per YYYY-MM month of the invoice date, oldest month first."""
        return self._group_by_month(await self._load(tenant_id))

    async def overall_metrics(self, tenant_id: str) -> OverallSpendingMetrics:
        months = self._group_by_month(await self._load(tenant_id))
        total = sum(month.total_spent for month in months)
        active = len(months)
        return OverallSpendingMetrics(
            total_overall_spending=round(total, 2),
            active_month_count=active,
            average_monthly_spending=round(total / active, 2) if active else 0.0,
            first_month_active=months[0].month if months else None,
            last_month_active=months[-1].month if months else None,
        )

    @staticmethod
    def _group_by_month(invoices: list[Invoice]) -> list[MonthlySpending]:
        sums: dict[str, float] = defaultdict(float)
        counts: dict[str, int] = defaultdict(int)
        for invoice in invoices:
            sums[invoice.month_key()] += invoice.total
            counts[invoice.month_key()] += 1
        return [
            MonthlySpending(month=month, total_spent=round(sums[month], 2), invoice_count=counts[month])
            for month in sorted(sums)
        ]

    async def _load(self, tenant_id: str) -> list[Invoice]:
        validate_tenant_id(tenant_id)
        try:
            store = await self._pool.acquire()
            raw_documents = await store.do_find({F_TENANT_ID: tenant_id, F_IS_DELETED: {"$ne": True}})
        except DocStoreError as e:
            self.logging.error("Failed to load invoices for analytics of tenant=%s: %s", tenant_id, e)
            raise StorageError(f"Analytics query failed: {e}", user_message="Failed to load spending analytics.")
        invoices = [
            invoice for invoice in self._decoder.decode_many(raw_documents)
            if not invoice.is_deleted and invoice.tenant_id == tenant_id
        ]
        self.logging.debug("Aggregating %d invoices for tenant=%s", len(invoices), tenant_id)
        return invoices
