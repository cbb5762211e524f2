from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class EmbedClientOllama(EmbedClientInterface):
    """Embeddings through Ollama's /api/embed (batch input, one vector per text)."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        # e.g. "10m"; unset leaves Ollama's own default in place
        self._keep_alive = self.get_config_val("KEEP_ALIVE", default="", val_type="string")

    def _get_engine_name(self) -> str:
        return "Ollama"

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="KEEP_ALIVE", val_type="string", default=""),
        ]

    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        # ollama answers "Ollama is running" on its root
        return ""

    def get_endpoint_embedding(self) -> str:
        return "/api/embed"

    def get_embed_payload(self, texts: list[str]) -> dict:
        payload = {"model": self.embed_model, "input": texts}
        if self._keep_alive:
            payload["keep_alive"] = self._keep_alive
        return payload

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        if not isinstance(response_data, dict):
            raise ValueError("Ollama embed response is not a JSON object (got %s)." % type(response_data).__name__)
        embeddings = response_data.get("embeddings") or []
        if not isinstance(embeddings, list) or not embeddings or any(not isinstance(vector, list) or not vector for vector in embeddings):
            raise ValueError(
                "Ollama returned no usable embeddings (response keys: %s)." % list(response_data.keys())
            )
        return embeddings
