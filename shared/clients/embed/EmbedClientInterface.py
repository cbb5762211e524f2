from abc import abstractmethod

from shared.clients.HttpClientInterface import HttpClientInterface
from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(HttpClientInterface):
    """Base class for embedding backends.

    Invoice summaries and search queries must land in the same vector space, so
    one client (one model) serves both. When EMBED_DIMENSIONS is set, every
    returned vector is checked against it before it can reach the store's
    vector index, which only accepts vectors of its configured width.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.embed_model = helper_config.get_string_val("EMBED_MODEL", default=None)
        self.max_input_chars = int(helper_config.get_number_val("EMBED_MODEL_MAX_CHARS", default=0))
        self.expected_dimensions = int(helper_config.get_number_val("EMBED_DIMENSIONS", default=0))

    def _get_client_type(self) -> str:
        return "embed"

    ##########################################
    ############ BACKEND SPECIFIC ############
    ##########################################

    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """Path of the embedding endpoint relative to the base url."""
        pass

    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the request body for embedding the given texts."""
        pass

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Pull the vectors out of a parsed response body, in input order.

        Raises:
            ValueError: If the body carries no usable vectors.
        """
        pass

    ##########################################
    ############### HELPERS ##################
    ##########################################

    def _prepare_inputs(self, texts: list[str] | str) -> list[str]:
        texts = [texts] if isinstance(texts, str) else list(texts)
        if not texts or any(not text.strip() for text in texts):
            raise ValueError("Cannot embed empty text.")
        if self.max_input_chars:
            texts = [text[: self.max_input_chars] for text in texts]
        return texts

    def _check_vectors(self, vectors: list[list[float]], input_count: int) -> list[list[float]]:
        if len(vectors) != input_count:
            raise ValueError(
                "Embedding backend returned %d vectors for %d inputs." % (len(vectors), input_count)
            )
        if self.expected_dimensions:
            for vector in vectors:
                if len(vector) != self.expected_dimensions:
                    raise ValueError(
                        "Embedding has %d dimensions, expected %d (EMBED_DIMENSIONS)."
                        % (len(vector), self.expected_dimensions)
                    )
        return vectors

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Embed one or more texts.

        Returns:
            list[list[float]]: One vector per input, in input order.

        Raises:
            ClientRequestError: If the HTTP request fails.
            ValueError: On empty input, a missing vector or a dimension mismatch.
        """
        inputs = self._prepare_inputs(texts)
        response = await self.do_request(
            method="POST",
            endpoint=self.get_endpoint_embedding(),
            json=self.get_embed_payload(inputs),
            raise_on_error=True,
        )
        vectors = self.extract_embeddings_from_response(response.json())
        return self._check_vectors(vectors, len(inputs))

    async def do_embed_text(self, text: str) -> list[float]:
        vectors = await self.do_embed(text)
        return vectors[0]
