import io
from collections.abc import Iterator
from typing import Any

import pdfplumber
from PIL import Image, ImageSequence

from docflow.rendering.base import PDF_MIME_TYPE, BasePageRenderer, RenderedPage
from docflow.rendering.exceptions import RenderError

_IMAGE_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/tiff"})


class PdfPlumberRenderer(BasePageRenderer):
    """Renders PDF pages using pdfplumber and image files using Pillow."""

    def render(self, data: bytes, mime_type: str, dpi: int) -> Iterator[RenderedPage]:
        if mime_type == PDF_MIME_TYPE:
            return self._render_pdf(data, dpi)
        if mime_type in _IMAGE_MIME_TYPES:
            return self._render_image(data)
        raise RenderError(f"Cannot render mime type '{mime_type}'")

    def _render_pdf(self, data: bytes, dpi: int) -> Iterator[RenderedPage]:
        try:
            pdf = pdfplumber.open(io.BytesIO(data))
        except Exception as exc:
            raise RenderError(f"pdfplumber could not open document: {exc}") from exc

        with pdf:
            for index, page in enumerate(pdf.pages, start=1):
                try:
                    rendered = self._render_pdf_page(page, index, dpi)
                except Exception as exc:
                    raise RenderError(
                        f"pdfplumber failed to render page {index}: {exc}"
                    ) from exc
                yield rendered

    @staticmethod
    def _render_pdf_page(page: Any, page_number: int, dpi: int) -> RenderedPage:
        image = page.to_image(resolution=dpi).original
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        width_px, height_px = image.size
        return RenderedPage(
            page_number=page_number,
            width_px=width_px,
            height_px=height_px,
            rotation_deg=int(getattr(page, "rotation", 0) or 0),
            image_png=buffer.getvalue(),
            native_text=page.extract_text() or "",
            image_coverage=_image_coverage(page.images, float(page.width), float(page.height)),
        )

    @staticmethod
    def _render_image(data: bytes) -> Iterator[RenderedPage]:
        try:
            source = Image.open(io.BytesIO(data))
        except Exception as exc:
            raise RenderError(f"Pillow could not open image: {exc}") from exc

        with source:
            for index, frame in enumerate(ImageSequence.Iterator(source), start=1):
                try:
                    buffer = io.BytesIO()
                    frame.convert("RGB").save(buffer, format="PNG")
                except Exception as exc:
                    raise RenderError(f"Pillow failed to render frame {index}: {exc}") from exc
                width_px, height_px = frame.size
                yield RenderedPage(
                    page_number=index,
                    width_px=width_px,
                    height_px=height_px,
                    rotation_deg=0,
                    image_png=buffer.getvalue(),
                    image_coverage=1.0,
                    from_image_file=True,
                )


def _image_coverage(images: list[dict[str, Any]], width: float, height: float) -> float:
    page_area = width * height
    if page_area <= 0:
        return 0.0
    covered = 0.0
    for image in images:
        covered += max(0.0, float(image["x1"]) - float(image["x0"])) * max(
            0.0, float(image["bottom"]) - float(image["top"])
        )
    return min(1.0, covered / page_area)
