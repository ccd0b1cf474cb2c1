"""Per-page decision between embedded text and OCR."""

from docflow.database.models import TextAcquisitionDecision
from docflow.rendering.base import RenderedPage

LARGE_IMAGE_COVERAGE = 0.5


def decide_text_acquisition(page: RenderedPage, min_chars: int) -> TextAcquisitionDecision:
    """Pick how text should be obtained for a rendered page.

    Scans and photos go to OCR. A page with enough embedded text keeps it,
    unless a large image dominates a page with only a few characters. Pages
    with neither text nor images are blank.
    """
    if page.from_image_file:
        return TextAcquisitionDecision.OCR
    chars = len(page.native_text.strip())
    if chars >= min_chars:
        return TextAcquisitionDecision.EMBEDDED_TEXT
    if page.image_coverage >= LARGE_IMAGE_COVERAGE:
        return TextAcquisitionDecision.OCR
    if chars > 0:
        return TextAcquisitionDecision.EMBEDDED_TEXT
    if page.image_coverage > 0:
        return TextAcquisitionDecision.OCR
    return TextAcquisitionDecision.NONE
