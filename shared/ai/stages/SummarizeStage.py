from shared.ai.models.StageOutputs import SummaryOutput
from shared.ai.stages.PromptStageInterface import PromptStageInterface
from shared.models.invoice import LineItem

SUMMARIZE_PROMPT = """You are an accounting assistant. Create a concise summary of the following invoice data, highlighting the vendor, date, and total amount due. Also mention key line items.

Vendor: {vendor}
Date: {date}
Total Amount: {total}
Line Items:
{line_items}"""


class SummarizeStage(PromptStageInterface[SummaryOutput]):
    def get_stage_name(self) -> str:
        return "summarize"

    def get_output_model(self) -> type[SummaryOutput]:
        return SummaryOutput

    async def run(self, vendor: str, date: str, total: float, line_items: list[LineItem]) -> str:
        """Summarize an invoice.

        Raises:
            ValueError: If the reply carries no summary.
        """
        prompt = SUMMARIZE_PROMPT.format(
            vendor=vendor,
            date=date,
            total=total,
            line_items=self.format_line_items(line_items),
        )
        output = await self._ask(prompt)
        if output.summary is None or not output.summary.strip():
            raise ValueError("AI summarization failed: no summary received from the model.")
        return output.summary.strip()
