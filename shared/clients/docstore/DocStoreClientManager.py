from shared.clients.EngineLoader import load_engine_client, resolve_engine
from shared.clients.docstore.DocStoreClientInterface import DocStoreClientInterface
from shared.helper.HelperConfig import HelperConfig


class DocStoreClientManager:
    """Owns the single pooled document store client of the process.

    Created once by the composition root and handed to every service. The
    underlying driver connection is established lazily on the first acquire()
    and re-established transparently when a liveness check fails.
    """

    def __init__(self, helper_config: HelperConfig, client: DocStoreClientInterface | None = None):
        self.helper_config = helper_config
        if client is None:
            engine = resolve_engine(helper_config, "docstore")
            client = load_engine_client(helper_config, "docstore", "DocStoreClient", engine)
        self.client: DocStoreClientInterface = client

    def get_client(self) -> DocStoreClientInterface:
        """Return the client without checking liveness."""
        return self.client

    async def acquire(self) -> DocStoreClientInterface:
        """Return the client after making sure its connection is up.

        Raises:
            DocStoreError: If the store cannot be reached even after reconnecting.
        """
        await self.client.ensure_ready()
        return self.client

    async def close(self) -> None:
        await self.client.close()
