from dataclasses import dataclass

from shared.ai.stages.CategorizeStage import CategorizeStage
from shared.ai.stages.EmbedStage import EmbedStage
from shared.ai.stages.ExtractStage import ExtractStage
from shared.ai.stages.RecurrenceStage import RecurrenceStage
from shared.ai.stages.SummarizeStage import SummarizeStage
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig


@dataclass
class AIStageClients:
    """The five independent AI capabilities used by ingestion and search."""

    extract: ExtractStage
    summarize: SummarizeStage
    categorize: CategorizeStage
    recurrence: RecurrenceStage
    embed: EmbedStage

    @classmethod
    def from_clients(cls, helper_config: HelperConfig, llm_client: LLMClientInterface, embed_client: EmbedClientInterface) -> "AIStageClients":
        return cls(
            extract=ExtractStage(helper_config, llm_client),
            summarize=SummarizeStage(helper_config, llm_client),
            categorize=CategorizeStage(helper_config, llm_client),
            recurrence=RecurrenceStage(helper_config, llm_client),
            embed=EmbedStage(helper_config, embed_client),
        )
