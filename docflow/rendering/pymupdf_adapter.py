from collections.abc import Iterator
from typing import Any

import pymupdf

from docflow.rendering.base import PDF_MIME_TYPE, BasePageRenderer, RenderedPage
from docflow.rendering.exceptions import RenderError

_FILETYPES = {
    "application/pdf": "pdf",
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/tiff": "tiff",
}


class PyMuPdfRenderer(BasePageRenderer):
    """Renders PDF pages and image files using PyMuPDF."""

    def render(self, data: bytes, mime_type: str, dpi: int) -> Iterator[RenderedPage]:
        filetype = _FILETYPES.get(mime_type)
        if filetype is None:
            raise RenderError(f"Cannot render mime type '{mime_type}'")
        from_image_file = mime_type != PDF_MIME_TYPE
        try:
            doc = pymupdf.open(stream=data, filetype=filetype)  # type: ignore[no-untyped-call]
        except Exception as exc:
            raise RenderError(f"pymupdf could not open document: {exc}") from exc

        with doc:
            for index, page in enumerate(doc, start=1):
                try:
                    rendered = self._render_page(page, index, dpi, from_image_file)
                except Exception as exc:
                    raise RenderError(f"pymupdf failed to render page {index}: {exc}") from exc
                yield rendered

    @staticmethod
    def _render_page(page: Any, page_number: int, dpi: int, from_image_file: bool) -> RenderedPage:
        pixmap = page.get_pixmap(dpi=dpi)
        if from_image_file:
            native_text = ""
            coverage = 1.0
        else:
            native_text = page.get_text()
            coverage = _image_coverage(page)
        return RenderedPage(
            page_number=page_number,
            width_px=pixmap.width,
            height_px=pixmap.height,
            rotation_deg=int(page.rotation),
            image_png=pixmap.tobytes("png"),
            native_text=native_text,
            image_coverage=coverage,
            from_image_file=from_image_file,
        )


def _image_coverage(page: Any) -> float:
    """Fraction of the page area covered by embedded images."""
    page_area = page.rect.width * page.rect.height
    if page_area <= 0:
        return 0.0
    covered = 0.0
    for info in page.get_image_info():
        x0, y0, x1, y1 = info["bbox"]
        covered += max(0.0, x1 - x0) * max(0.0, y1 - y0)
    return min(1.0, covered / page_area)
