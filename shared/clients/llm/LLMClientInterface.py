from abc import abstractmethod
import json

from shared.clients.HttpClientInterface import HttpClientInterface
from shared.helper.HelperConfig import HelperConfig


class LLMClientInterface(HttpClientInterface):
    """Chat model backend used by every prompt-driven invoice stage.

    LLM_CHAT_MODEL answers text-only prompts. Prompts carrying the uploaded
    invoice file go to LLM_VISION_MODEL, which defaults to the chat model.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.chat_model = helper_config.get_string_val("LLM_CHAT_MODEL", default=None)
        self.vision_model = helper_config.get_string_val("LLM_VISION_MODEL", default="") or self.chat_model

    def _get_client_type(self) -> str:
        return "llm"

    ##########################################
    ############ BACKEND SPECIFIC ############
    ##########################################

    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        pass

    @abstractmethod
    def build_user_message(self, text: str, attachments: list[bytes] | None = None) -> dict:
        """One user turn, with raw file contents attached the way the backend expects them."""
        pass

    @abstractmethod
    def get_chat_payload(self, messages: list[dict], response_schema: dict | None = None) -> dict:
        pass

    @abstractmethod
    def extract_chat_response(self, response_data: dict) -> str:
        """Assistant reply text from a parsed response body.

        Raises:
            ValueError: If the body carries no reply.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_chat(self, messages: list[dict], response_schema: dict | None = None) -> str:
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_chat(),
            json=self.get_chat_payload(messages, response_schema),
            raise_on_error=True,
        )
        return self.extract_chat_response(response.json())

    async def do_chat_json(self, messages: list[dict], response_schema: dict) -> dict:
        """Ask for a reply conforming to response_schema and parse it.

        A reply wrapped in a ```json fence is unwrapped first.

        Raises:
            ClientRequestError: If the HTTP request fails.
            ValueError: If the reply is not a JSON object. The message contains "malformed".
        """
        reply = strip_code_fence(await self.do_chat(messages, response_schema))
        try:
            parsed = json.loads(reply)
        except json.JSONDecodeError as e:
            raise ValueError(f"LLM returned malformed JSON: {e}. Reply starts with: {reply[:120]!r}")
        if not isinstance(parsed, dict):
            raise ValueError(f"LLM returned malformed JSON: expected an object, got {type(parsed).__name__}.")
        return parsed


def strip_code_fence(reply: str) -> str:
    text = reply.strip()
    if text.startswith("```") and text.endswith("```") and len(text) >= 6:
        text = text[3:-3]
        # drop the language tag on the opening line
        first_newline = text.find("\n")
        if first_newline != -1 and not text[:first_newline].strip().startswith("{"):
            text = text[first_newline + 1:]
    return text.strip()
