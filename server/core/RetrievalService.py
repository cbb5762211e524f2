import calendar

import httpx

from shared.ai.stages.EmbedStage import EmbedStage
from shared.clients.docstore.DocStoreClientInterface import DocStoreClientInterface
from shared.clients.docstore.DocStoreClientManager import DocStoreClientManager
from shared.errors.ClientErrors import ClientRequestError, DocStoreError
from shared.errors.InvoiceErrors import FatalPipelineError, MissingEmbeddingError, NotFoundError, StorageError
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperValidation import validate_record_id, validate_tenant_id, validate_year_month
from shared.helper.RecordDecoder import RecordDecoder
from shared.models.invoice import F_DATE, F_ID, F_IS_DELETED, F_SUMMARY_EMBEDDING, F_TENANT_ID, F_UPLOADED_AT, Invoice
from server.models.responses import InvoiceSearchHit, SearchResponse

STORE_ERRORS = (DocStoreError,)
EMBED_ERRORS = (httpx.HTTPError, ClientRequestError, ValueError)


class RetrievalService:
    """Read side of the invoice store: listings, lookups and similarity search.

    Every query is scoped to one tenant and excludes soft-deleted records. Stored
    documents always pass through the RecordDecoder, and the scope is checked
    again on the decoded values.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        store_pool: DocStoreClientManager,
        embed_stage: EmbedStage,
        decoder: RecordDecoder,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._pool = store_pool
        self._embed = embed_stage
        self._decoder = decoder
        self.result_limit = int(helper_config.get_number_val("SEARCH_RESULT_LIMIT", default=10))
        self.candidate_factor = int(helper_config.get_number_val("SEARCH_CANDIDATE_FACTOR", default=10))
        self.similar_limit = int(helper_config.get_number_val("SIMILAR_RESULT_LIMIT", default=5))

    ##########################################
    ############### LISTINGS #################
    ##########################################

    async def list_all(self, tenant_id: str) -> list[Invoice]:
        """All visible invoices of the tenant, most recently uploaded first."""
        validate_tenant_id(tenant_id)
        store = await self._acquire()
        raw_documents = await self._find(store, self._visible_filter(tenant_id), sort={F_UPLOADED_AT: -1})
        return self._decode_visible(tenant_id, raw_documents)

    async def get_by_id(self, tenant_id: str, invoice_id: str) -> Invoice:
        """
        Raises:
            InvalidInputError: Tenant or invoice id rejected.
            NotFoundError: No visible invoice with that id for the tenant.
        """
        validate_tenant_id(tenant_id)
        store = await self._acquire()
        validate_record_id(invoice_id, store.is_valid_id(invoice_id))
        id_filter = {F_ID: store.encode_id(invoice_id), **self._visible_filter(tenant_id)}
        try:
            raw = await store.do_find_one(id_filter)
        except STORE_ERRORS as e:
            self.logging.error("Failed to read invoice %s for tenant=%s: %s", invoice_id, tenant_id, e)
            raise StorageError(f"Find failed: {e}", user_message="Failed to load the invoice.")
        visible = self._decode_visible(tenant_id, [raw] if raw is not None else [])
        if not visible:
            raise NotFoundError(f"Invoice {invoice_id} not found for tenant {tenant_id}.")
        return visible[0]

    async def list_by_month(self, tenant_id: str, year: int, month: int) -> list[Invoice]:
        """Invoices dated within the calendar month, by date ascending then upload time descending."""
        validate_tenant_id(tenant_id)
        validate_year_month(year, month)
        last_day = calendar.monthrange(year, month)[1]
        first, last = f"{year:04d}-{month:02d}-01", f"{year:04d}-{month:02d}-{last_day:02d}"

        store = await self._acquire()
        month_filter = {**self._visible_filter(tenant_id), F_DATE: {"$gte": first, "$lte": last}}
        raw_documents = await self._find(store, month_filter, sort={F_DATE: 1, F_UPLOADED_AT: -1})
        return [invoice for invoice in self._decode_visible(tenant_id, raw_documents) if first <= invoice.date <= last]

    ##########################################
    ################ SEARCH ##################
    ##########################################

    async def search_semantic(self, tenant_id: str, query_text: str, limit: int | None = None) -> SearchResponse:
        """Rank the tenant's invoices by similarity of their summary to the query.

        An empty or whitespace query returns the plain listing without scores.

        Raises:
            FatalPipelineError: The query could not be embedded.
            StorageError: The vector search failed.
        """
        validate_tenant_id(tenant_id)
        query = (query_text or "").strip()
        if not query:
            invoices = await self.list_all(tenant_id)
            return SearchResponse(query=query, results=[InvoiceSearchHit(invoice=i) for i in invoices], total=len(invoices))

        result_limit = max(1, limit or self.result_limit)
        try:
            vector = await self._embed.run(query)
        except EMBED_ERRORS as e:
            self.logging.error("Could not embed search query for tenant=%s: %s", tenant_id, e)
            raise FatalPipelineError(
                stage="embed",
                message=f"Query embedding failed: {e}",
                user_message="The AI service is currently unavailable or timed out. Please try again later.",
            )

        self.logging.debug("Semantic search for tenant=%s: %r (limit=%d)", tenant_id, query, result_limit)
        hits = await self._vector_search(tenant_id, vector, result_limit)
        return SearchResponse(query=query, results=hits, total=len(hits))

    async def find_similar(self, tenant_id: str, invoice_id: str) -> list[InvoiceSearchHit]:
        """Invoices whose summaries are closest to the given invoice, never including itself.

        Raises:
            NotFoundError: The source invoice is not visible to the tenant.
            MissingEmbeddingError: The source invoice has no stored embedding.
        """
        source = await self.get_by_id(tenant_id, invoice_id)
        if not source.has_embedding():
            raise MissingEmbeddingError(f"Invoice {invoice_id} of tenant {tenant_id} has no embedding.")

        hits = await self._vector_search(
            tenant_id,
            source.summary_embedding,
            result_limit=self.similar_limit + 1,
            exclude_id=invoice_id,
        )
        return [hit for hit in hits if hit.invoice.id != invoice_id][: self.similar_limit]

    async def _vector_search(
        self, tenant_id: str, vector: list[float], result_limit: int, exclude_id: str | None = None
    ) -> list[InvoiceSearchHit]:
        store = await self._acquire()
        pipeline = store.get_vector_search_stages(
            query_vector=vector,
            path=F_SUMMARY_EMBEDDING,
            candidate_pool_size=result_limit * self.candidate_factor,
            result_limit=result_limit,
            filter=self._visible_filter(tenant_id),
        )
        post_match: dict = {F_SUMMARY_EMBEDDING: {"$exists": True}}
        if exclude_id is not None:
            post_match[F_ID] = {"$ne": store.encode_id(exclude_id)}
        pipeline.append({"$match": post_match})

        try:
            raw_documents = await store.do_aggregate(pipeline)
        except STORE_ERRORS as e:
            self.logging.error("Vector search failed for tenant=%s: %s", tenant_id, e)
            raise StorageError(f"Vector search failed: {e}", user_message="Search is currently unavailable.")

        hits = []
        for raw in raw_documents:
            score = raw.get(DocStoreClientInterface.SCORE_FIELD) if isinstance(raw, dict) else None
            for invoice in self._decode_visible(tenant_id, [raw]):
                hits.append(InvoiceSearchHit(invoice=invoice, score=score if isinstance(score, (int, float)) else None))
        return hits

    ##########################################
    ############### HELPERS ##################
    ##########################################

    @staticmethod
    def _visible_filter(tenant_id: str) -> dict:
        return {F_TENANT_ID: tenant_id, F_IS_DELETED: {"$ne": True}}

    def _decode_visible(self, tenant_id: str, raw_documents: list) -> list[Invoice]:
        visible = []
        for invoice in self._decoder.decode_many(raw_documents):
            if invoice.is_deleted or invoice.tenant_id != tenant_id:
                self.logging.debug("Dropping invoice %s outside the visible scope of tenant=%s", invoice.id, tenant_id)
                continue
            visible.append(invoice)
        return visible

    async def _acquire(self) -> DocStoreClientInterface:
        try:
            return await self._pool.acquire()
        except STORE_ERRORS as e:
            self.logging.error("Document store unavailable: %s", e)
            raise StorageError(f"Document store unavailable: {e}", user_message="The invoice database is currently unavailable.")

    async def _find(self, store: DocStoreClientInterface, filter: dict, sort: dict) -> list[dict]:
        try:
            return await store.do_find(filter, sort=sort)
        except STORE_ERRORS as e:
            self.logging.error("Failed to list invoices for %s: %s", filter.get(F_TENANT_ID), e)
            raise StorageError(f"Find failed: {e}", user_message="Failed to load invoices.")
