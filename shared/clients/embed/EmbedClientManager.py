from shared.clients.EngineLoader import load_engine_client, resolve_engine
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig


class EmbedClientManager:
    """Creates the embedding client (EMBED_ENGINE).

    Ingestion and search must share this one client so that stored summary
    vectors and query vectors come from the same model.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        engine = resolve_engine(helper_config, "embed")
        self.client: EmbedClientInterface = load_engine_client(helper_config, "embed", "EmbedClient", engine)

    def get_client(self) -> EmbedClientInterface:
        return self.client
