from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass

PDF_MIME_TYPE = "application/pdf"


@dataclass(frozen=True)
class RenderedPage:
    """One rasterized page together with the facts needed to route it to OCR."""

    page_number: int
    width_px: int
    height_px: int
    rotation_deg: int
    image_png: bytes
    native_text: str = ""
    image_coverage: float = 0.0
    from_image_file: bool = False


class BasePageRenderer(ABC):
    """Contract for all page rendering adapters."""

    @abstractmethod
    def render(self, data: bytes, mime_type: str, dpi: int) -> Iterator[RenderedPage]:
        """Rasterize every page of a PDF or image file, in page order.

        Args:
            data: Raw file content.
            mime_type: Declared mime type of the file.
            dpi: Render resolution.

        Yields:
            RenderedPage for pages 1..N.

        Raises:
            RenderError: if the file cannot be opened or a page fails to render.
        """
