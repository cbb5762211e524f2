from shared.clients.EngineLoader import load_engine_client, resolve_engine
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig


class LLMClientManager:
    """Creates the chat model client (LLM_ENGINE) shared by the extract, summarize, categorize and recurrence stages."""

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        engine = resolve_engine(helper_config, "llm")
        self.client: LLMClientInterface = load_engine_client(helper_config, "llm", "LLMClient", engine)

    def get_client(self) -> LLMClientInterface:
        return self.client
