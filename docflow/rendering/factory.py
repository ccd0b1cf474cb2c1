from docflow.config.settings import Settings
from docflow.rendering.base import BasePageRenderer
from docflow.rendering.pdfplumber_adapter import PdfPlumberRenderer
from docflow.rendering.pymupdf_adapter import PyMuPdfRenderer


class PageRendererFactory:
    """Creates the correct page renderer based on settings."""

    ADAPTERS: dict[str, type[BasePageRenderer]] = {
        "pdfplumber": PdfPlumberRenderer,
        "pymupdf": PyMuPdfRenderer,
    }

    @classmethod
    def create(cls, settings: Settings) -> BasePageRenderer:
        engine = settings.render_engine.lower()
        adapter_cls = cls.ADAPTERS.get(engine)
        if adapter_cls is None:
            raise ValueError(
                f"Unknown render engine '{engine}'. Choose from: {list(cls.ADAPTERS)}"
            )
        return adapter_cls()
