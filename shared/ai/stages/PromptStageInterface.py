from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.invoice import LineItem

OutputT = TypeVar("OutputT", bound=BaseModel)


class PromptStageInterface(ABC, Generic[OutputT]):
    """Base for AI stages that prompt the LLM and validate a JSON reply into a pydantic model."""

    def __init__(self, helper_config: HelperConfig, llm_client: LLMClientInterface):
        self.logging = helper_config.get_logger()
        self._llm = llm_client

    ##########################################
    ################ GETTER ##################
    ##########################################

    @abstractmethod
    def get_stage_name(self) -> str:
        pass

    @abstractmethod
    def get_output_model(self) -> type[OutputT]:
        pass

    ##########################################
    ############### HELPERS ##################
    ##########################################

    @staticmethod
    def format_line_items(line_items: list[LineItem]) -> str:
        if not line_items:
            return "- (none)"
        return "\n".join(f"- Description: {item.description}, Amount: {item.amount}" for item in line_items)

    async def _ask(self, prompt: str, attachments: list[bytes] | None = None) -> OutputT:
        """Send the prompt and validate the reply.

        Raises:
            ClientRequestError: If the LLM backend rejects the request.
            ValueError: If the reply is not valid JSON or does not fit the output model.
        """
        output_model = self.get_output_model()
        message = self._llm.build_user_message(prompt, attachments)
        raw = await self._llm.do_chat_json([message], output_model.model_json_schema())
        try:
            return output_model.model_validate(raw)
        except ValidationError as e:
            raise ValueError(f"{self.get_stage_name()} reply is malformed: {e.error_count()} validation error(s). {e}")
