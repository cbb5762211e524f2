from shared.ai.models.StageOutputs import CategoriesOutput
from shared.ai.stages.PromptStageInterface import PromptStageInterface
from shared.models.invoice import UNCATEGORIZED, LineItem

NEEDS_REVIEW = "Needs Review"

CATEGORIZE_PROMPT = """You are an expert accounting assistant. Suggest 1 to 3 relevant business expense categories for an invoice based on its vendor and line items.

Consider common business expense types, e.g. "Software Subscription", "Office Supplies", "Utilities", "Travel & Expenses", "Marketing", "Legal Fees", "Consulting Services", "Hardware Purchase", "Cloud Services".

Vendor: {vendor}

Line Items:
{line_items}"""


class CategorizeStage(PromptStageInterface[CategoriesOutput]):
    def get_stage_name(self) -> str:
        return "categorize"

    def get_output_model(self) -> type[CategoriesOutput]:
        return CategoriesOutput

    async def run(self, vendor: str, line_items: list[LineItem]) -> list[str]:
        """Suggest expense categories. The reply is returned untrimmed."""
        if not vendor and not line_items:
            return [UNCATEGORIZED]
        output = await self._ask(CATEGORIZE_PROMPT.format(vendor=vendor, line_items=self.format_line_items(line_items)))
        if output.categories is None:
            return [NEEDS_REVIEW]
        return output.categories
