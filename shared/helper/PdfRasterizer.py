import io

import pypdfium2 as pdfium

from shared.helper.HelperConfig import HelperConfig

PDF_MIME_TYPE = "application/pdf"


class PdfRasterizer:
    """Renders PDF pages to PNG so vision models that only accept raster images can read them.

    Non-PDF files pass through unchanged. Only the first INGEST_PDF_MAX_PAGES
    pages are rendered; invoices rarely carry their totals further back.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self.max_pages = int(helper_config.get_number_val("INGEST_PDF_MAX_PAGES", default=3))
        self.scale = float(helper_config.get_number_val("INGEST_PDF_RENDER_SCALE", default=2.0))

    def to_images(self, file_bytes: bytes, mime_type: str) -> list[bytes]:
        """
        Raises:
            ValueError: If the PDF cannot be opened or has no pages. The message contains "unparsable".
        """
        if mime_type != PDF_MIME_TYPE:
            return [file_bytes]

        try:
            document = pdfium.PdfDocument(file_bytes)
        except pdfium.PdfiumError as e:
            raise ValueError(f"unparsable PDF: {e}")
        try:
            page_count = len(document)
            if page_count == 0:
                raise ValueError("unparsable PDF: document has no pages")
            images = [self._render_page(document[index]) for index in range(min(page_count, self.max_pages))]
        finally:
            document.close()

        self.logging.debug("Rendered %d of %d PDF page(s) at scale %.1f", len(images), page_count, self.scale)
        return images

    def _render_page(self, page) -> bytes:
        try:
            image = page.render(scale=self.scale).to_pil()
        finally:
            page.close()
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()
