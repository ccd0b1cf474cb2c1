import pytest

from documents import make_pdf, make_png


@pytest.fixture()
def sample_pdf_bytes() -> bytes:
    """Generate a minimal single-page PDF with known text content."""
    return make_pdf("Invoice INV-1001 from Acme Supplies Ltd, total due 120.00 EUR")


@pytest.fixture()
def multi_page_pdf_bytes() -> bytes:
    """Generate a two-page PDF with known text on each page."""
    return make_pdf("Page one content", "Page two content")


@pytest.fixture()
def three_page_pdf_bytes() -> bytes:
    return make_pdf(
        "Purchase order PO-7 for office chairs",
        "Delivery note DN-12 for office chairs",
        "Invoice INV-99 for office chairs",
    )


@pytest.fixture()
def empty_pdf_bytes() -> bytes:
    """Generate a valid PDF with no text content (blank page)."""
    return make_pdf("")


@pytest.fixture()
def sample_png_bytes() -> bytes:
    return make_png()
