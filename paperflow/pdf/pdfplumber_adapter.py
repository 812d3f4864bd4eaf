import io

import pdfplumber

from paperflow.pdf.base import BasePdfRasterizer
from paperflow.pdf.exceptions import PdfRasterizeError


class PdfPlumberAdapter(BasePdfRasterizer):
    """Renders PDF pages using pdfplumber."""

    def rasterize(self, pdf_bytes: bytes) -> bytes:
        try:
            with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                if not pdf.pages:
                    raise PdfRasterizeError("PDF has no pages")
                image = pdf.pages[0].to_image(resolution=self._dpi).original
                buffer = io.BytesIO()
                image.save(buffer, format="PNG")
            return buffer.getvalue()
        except PdfRasterizeError:
            raise
        except Exception as exc:
            raise PdfRasterizeError(f"pdfplumber rasterization failed: {exc}") from exc
