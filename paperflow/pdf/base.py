from abc import ABC, abstractmethod

DEFAULT_DPI = 150


class BasePdfRasterizer(ABC):
    """Contract for all PDF rasterization adapters."""

    def __init__(self, dpi: int = DEFAULT_DPI) -> None:
        self._dpi = dpi

    @abstractmethod
    def rasterize(self, pdf_bytes: bytes) -> bytes:
        """Render the first page of a PDF.

        Args:
            pdf_bytes: Raw PDF file content.

        Returns:
            PNG image bytes of page one.

        Raises:
            PdfRasterizeError: if the PDF is empty or cannot be rendered.
        """
