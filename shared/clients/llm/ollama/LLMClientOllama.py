import base64

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class LLMClientOllama(LLMClientInterface):
    """Ollama /api/chat without streaming.

    Invoice page images travel base64-encoded in the message's "images" list and a
    response schema is passed as "format", which makes Ollama emit conforming JSON.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        # extraction and classification want repeatable answers
        self._temperature = self.get_config_val("TEMPERATURE", default=0, val_type="number")
        self._num_ctx = self.get_config_val("NUM_CTX", default=0, val_type="number")

    def _get_engine_name(self) -> str:
        return "Ollama"

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="TEMPERATURE", val_type="number", default=0),
            EnvConfig(env_key="NUM_CTX", val_type="number", default=0),
        ]

    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return ""

    def _get_endpoint_chat(self) -> str:
        return "/api/chat"

    def build_user_message(self, text: str, attachments: list[bytes] | None = None) -> dict:
        message = {"role": "user", "content": text}
        if attachments:
            message["images"] = [base64.b64encode(item).decode("ascii") for item in attachments]
        return message

    def get_chat_payload(self, messages: list[dict], response_schema: dict | None = None) -> dict:
        options = {"temperature": self._temperature}
        if self._num_ctx:
            options["num_ctx"] = int(self._num_ctx)
        with_file = any(message.get("images") for message in messages)
        payload = {
            "model": self.vision_model if with_file else self.chat_model,
            "messages": messages,
            "stream": False,
            "options": options,
        }
        if response_schema is not None:
            payload["format"] = response_schema
        return payload

    def extract_chat_response(self, response_data: dict) -> str:
        if not isinstance(response_data, dict):
            raise ValueError("Ollama chat response is not a JSON object (got %s)." % type(response_data).__name__)
        message = response_data.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise ValueError("Ollama chat response carries no message (response keys: %s)." % list(response_data.keys()))
        return content
