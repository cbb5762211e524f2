from shared.clients.EngineLoader import load_engine_client, resolve_engine
from shared.clients.blob.BlobClientInterface import BlobClientInterface
from shared.helper.HelperConfig import HelperConfig


class BlobClientManager:
    """Creates the blob storage client, if one is configured.

    Blob storage is optional: with BLOB_ENGINE unset, original invoice files are
    not kept and records carry no fileUrl.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client: BlobClientInterface | None = None

        engine = resolve_engine(helper_config, "blob", required=False)
        if engine is None:
            self.logging.info("No blob storage engine configured. Original invoice files will not be stored.")
        else:
            self.client = load_engine_client(helper_config, "blob", "BlobClient", engine)

    def get_client(self) -> BlobClientInterface | None:
        return self.client
