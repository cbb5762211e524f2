import asyncio

from shared.ai.models.StageOutputs import ExtractionOutput
from shared.ai.stages.PromptStageInterface import PromptStageInterface
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.PdfRasterizer import PdfRasterizer

EXTRACT_PROMPT = """You are an expert invoice reader. The attached images show a scanned or photographed invoice (uploaded as {mime_type}), one image per page.

Extract:
- the vendor name,
- the invoice date exactly as printed,
- the total amount due as a number without currency symbols,
- every line item with its description and amount.

If the document is not an invoice, leave vendor and total empty."""


class ExtractStage(PromptStageInterface[ExtractionOutput]):
    def __init__(self, helper_config: HelperConfig, llm_client: LLMClientInterface):
        super().__init__(helper_config=helper_config, llm_client=llm_client)
        self._rasterizer = PdfRasterizer(helper_config=helper_config)

    def get_stage_name(self) -> str:
        return "extract"

    def get_output_model(self) -> type[ExtractionOutput]:
        return ExtractionOutput

    async def run(self, file_bytes: bytes, mime_type: str) -> ExtractionOutput:
        """Extract vendor, date, total and line items from an invoice file.

        PDFs are rendered to page images first.

        Raises:
            ValueError: If the PDF is unparsable or vendor or total is missing from the reply.
        """
        images = await asyncio.to_thread(self._rasterizer.to_images, file_bytes, mime_type)
        output = await self._ask(EXTRACT_PROMPT.format(mime_type=mime_type), attachments=images)
        if not output.vendor or not output.vendor.strip() or output.total is None:
            raise ValueError(
                f"Extraction returned incomplete data (vendor={output.vendor!r}, total={output.total!r})."
            )
        output.vendor = output.vendor.strip()
        return output
