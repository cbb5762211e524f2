from shared.ai.models.StageOutputs import RecurrenceOutput
from shared.ai.stages.PromptStageInterface import PromptStageInterface
from shared.models.invoice import LineItem

RECURRENCE_PROMPT = """You are an expert financial analyst. Decide whether this invoice is likely a recurring MONTHLY expense.

Indicators of recurring charges:
- Keywords like "subscription", "monthly plan", "service fee", "retainer", "license", "hosting", "membership".
- Vendors known for subscription services (e.g. Adobe, Salesforce, AWS, Zoom, Microsoft 365, Google Workspace).
- Line items that describe an ongoing service rather than a one-time purchase.

Do not assume recurrence from the vendor alone when the line items describe a one-time purchase (e.g. "Hardware Purchase" from "Dell").
If it is unclear, or the charge looks annual or quarterly, answer false and leave reasoning empty.

Vendor: {vendor}

Line Items:
{line_items}"""


class RecurrenceStage(PromptStageInterface[RecurrenceOutput]):
    def get_stage_name(self) -> str:
        return "recurrence"

    def get_output_model(self) -> type[RecurrenceOutput]:
        return RecurrenceOutput

    async def run(self, vendor: str, line_items: list[LineItem]) -> RecurrenceOutput:
        if not vendor and not line_items:
            return RecurrenceOutput(is_likely_recurring=False, reasoning="Insufficient data to determine recurrence.")
        output = await self._ask(RECURRENCE_PROMPT.format(vendor=vendor, line_items=self.format_line_items(line_items)))
        if output.is_likely_recurring is None:
            return RecurrenceOutput(is_likely_recurring=False, reasoning="AI analysis for recurrence was inconclusive.")
        reasoning = (output.reasoning or "").strip() or None
        if output.is_likely_recurring and reasoning is None:
            reasoning = "AI determined as likely recurring."
        return RecurrenceOutput(is_likely_recurring=output.is_likely_recurring, reasoning=reasoning)
