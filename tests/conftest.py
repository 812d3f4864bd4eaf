import io

import pytest
from reportlab.lib.pagesizes import A6
from reportlab.pdfgen import canvas


def _receipt_pdf(*pages: list[str]) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A6)
    for lines in pages:
        y = 380
        for line in lines:
            c.drawString(20, y, line)
            y -= 16
        c.showPage()
    c.save()
    return buf.getvalue()


@pytest.fixture()
def receipt_pdf_bytes() -> bytes:
    """Single-page receipt with a vendor line and a total."""
    return _receipt_pdf(["ACME STORE", "Pens x2    5.00", "TOTAL     42.50 USD"])


@pytest.fixture()
def multi_page_pdf_bytes() -> bytes:
    """Two-page PDF; only the first page is ever rendered."""
    return _receipt_pdf(["Page one: receipt"], ["Page two: terms and conditions"])


@pytest.fixture()
def blank_pdf_bytes() -> bytes:
    """Valid PDF with one page and no content."""
    return _receipt_pdf([])
