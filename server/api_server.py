"""FastAPI application entry point for invoice_insights."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from server.core.AnalyticsService import AnalyticsService
from server.core.IngestionService import IngestionService
from server.core.RetrievalService import RetrievalService
from server.routers.AnalyticsRouter import router as analytics_router
from server.routers.InvoiceRouter import router as invoice_router
from server.routers.SearchRouter import router as search_router
from shared.ai.AIStageClients import AIStageClients
from shared.clients.ClientInterface import ClientInterface
from shared.clients.blob.BlobClientManager import BlobClientManager
from shared.clients.docstore.DocStoreClientManager import DocStoreClientManager
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.errors.ClientErrors import ClientRequestError, DocStoreError
from shared.errors.InvoiceErrors import (
    BlobStorageError, FatalPipelineError, InvalidInputError, InvoiceInsightsError,
    MissingEmbeddingError, NotFoundError, StorageError,
)
from shared.helper.DateNormalizer import DateNormalizer
from shared.helper.HelperConfig import HelperConfig
from shared.helper.RecordDecoder import RecordDecoder
from shared.logging.logging_setup import setup_logging

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")

# most specific class first
ERROR_STATUS_CODES: list[tuple[type[InvoiceInsightsError], int]] = [
    (InvalidInputError, 400),
    (NotFoundError, 404),
    (MissingEmbeddingError, 409),
    (FatalPipelineError, 422),
    (BlobStorageError, 502),
    (StorageError, 503),
]


def get_status_code(error: InvoiceInsightsError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return status_code
    return 500


def build_services(app: FastAPI, helper_config: HelperConfig, store_pool: DocStoreClientManager, stages: AIStageClients, blob_client=None) -> None:
    """Create the services on app.state from already constructed collaborators."""
    date_normalizer = DateNormalizer(helper_config=helper_config)
    decoder = RecordDecoder(helper_config=helper_config, date_normalizer=date_normalizer)
    app.state.ingestion_service = IngestionService(
        helper_config=helper_config,
        store_pool=store_pool,
        stages=stages,
        date_normalizer=date_normalizer,
        decoder=decoder,
        blob_client=blob_client,
    )
    app.state.retrieval_service = RetrievalService(
        helper_config=helper_config,
        store_pool=store_pool,
        embed_stage=stages.embed,
        decoder=decoder,
    )
    app.state.analytics_service = AnalyticsService(helper_config=helper_config, store_pool=store_pool, decoder=decoder)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    app.state.helper_config = HelperConfig(logger=logging)

    llm_client = LLMClientManager(helper_config=app.state.helper_config).get_client()
    embed_client = EmbedClientManager(helper_config=app.state.helper_config).get_client()
    blob_client = BlobClientManager(helper_config=app.state.helper_config).get_client()
    store_pool = DocStoreClientManager(helper_config=app.state.helper_config)
    clients: list[ClientInterface] = [c for c in (llm_client, embed_client, blob_client) if c is not None]

    logging.info("Booting all clients...")
    for client in clients:
        await client.boot()
    logging.info("All clients booted successfully.")

    build_services(
        app,
        helper_config=app.state.helper_config,
        store_pool=store_pool,
        stages=AIStageClients.from_clients(app.state.helper_config, llm_client, embed_client),
        blob_client=blob_client,
    )
    app.state.store_pool = store_pool

    await check_connections(clients, store_pool)

    # while the app is running...
    yield

    # when the app shuts down, close all client connections
    logging.info("Shutting down, closing all clients...")
    for client in clients:
        await client.close()
    await store_pool.close()
    logging.info("All clients closed.")


app = FastAPI(
    title="invoice_insights",
    description=(
        "Invoice intelligence service. Uploaded invoices are extracted, summarized, categorized "
        "and embedded by AI models and stored per tenant. Stored invoices can be listed, searched "
        "semantically and aggregated into spending analytics."
    ),
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(invoice_router)
app.include_router(search_router)
app.include_router(analytics_router)


@app.exception_handler(InvoiceInsightsError)
async def handle_invoice_error(request: Request, error: InvoiceInsightsError) -> JSONResponse:
    status_code = get_status_code(error)
    if status_code >= 500:
        logging.error("%s %s failed: %s", request.method, request.url.path, error)
    else:
        logging.info("%s %s rejected (%d): %s", request.method, request.url.path, status_code, error)
    content = {"detail": error.user_message}
    if isinstance(error, FatalPipelineError):
        content["stage"] = error.stage
    return JSONResponse(status_code=status_code, content=content)


async def check_connections(clients: list[ClientInterface], store_pool: DocStoreClientManager) -> None:
    """Check connectivity to all configured backends on startup.

    Failures are non-fatal: the document store reconnects on the next acquire(),
    and AI stage failures surface per request.
    """
    for client in clients:
        try:
            await client.do_healthcheck()
        except (httpx.HTTPError, ClientRequestError) as e:
            logging.warning(
                "%s is not reachable (%s). Requests depending on it will fail.",
                client.describe(), e,
            )

    try:
        await store_pool.acquire()
    except DocStoreError as e:
        logging.warning("Document store is not reachable (%s). Will retry on first request.", e)


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting invoice_insights API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", os.getcwd()),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000, log_config=None)
