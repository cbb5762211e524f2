from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig


class EmbedStage:
    """Turns text (an invoice summary or a search query) into an embedding vector."""

    def __init__(self, helper_config: HelperConfig, embed_client: EmbedClientInterface):
        self.logging = helper_config.get_logger()
        self._embed = embed_client

    def get_stage_name(self) -> str:
        return "embed"

    async def run(self, text: str) -> list[float]:
        """
        Raises:
            ClientRequestError: If the embedding backend rejects the request.
            ValueError: If no vector comes back.
        """
        return await self._embed.do_embed_text(text)
