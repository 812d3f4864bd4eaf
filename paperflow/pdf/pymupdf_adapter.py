import pymupdf

from paperflow.pdf.base import BasePdfRasterizer
from paperflow.pdf.exceptions import PdfRasterizeError


class PyMuPdfAdapter(BasePdfRasterizer):
    """Renders PDF pages using PyMuPDF."""

    def rasterize(self, pdf_bytes: bytes) -> bytes:
        try:
            with pymupdf.open(stream=pdf_bytes, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
                if doc.page_count == 0:
                    raise PdfRasterizeError("PDF has no pages")
                pixmap = doc[0].get_pixmap(dpi=self._dpi)
                return pixmap.tobytes("png")
        except PdfRasterizeError:
            raise
        except Exception as exc:
            raise PdfRasterizeError(f"pymupdf rasterization failed: {exc}") from exc
