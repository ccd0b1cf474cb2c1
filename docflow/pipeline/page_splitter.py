from collections.abc import Callable
from dataclasses import replace
from uuid import uuid4

from docflow.database.models import (
    Document,
    DocumentPage,
    PageRange,
    ProcessingDocument,
    TextAcquisitionDecision,
)
from docflow.database.repositories.page_repository import PageRepository
from docflow.hashing.hasher import ContentHasher
from docflow.logging.logger import Log
from docflow.rendering.base import BasePageRenderer
from docflow.rendering.exceptions import RenderError
from docflow.rendering.text_acquisition import decide_text_acquisition
from docflow.storage.base import BaseBlobStore
from docflow.storage.keys import page_key


class PageSplitter:
    """Renders a stored document into page images and page rows.

    Rendering is deterministic for the same bytes and DPI: page keys depend
    only on the document and page number, so a retry overwrites earlier
    output instead of adding to it.
    """

    def __init__(
        self,
        renderer: BasePageRenderer,
        blob_store: BaseBlobStore,
        hasher: ContentHasher,
        page_repo: PageRepository,
        *,
        dpi: int = 200,
        native_text_min_chars: int = 50,
        ocr_provider: str = "external",
    ) -> None:
        self._renderer = renderer
        self._blob_store = blob_store
        self._hasher = hasher
        self._page_repo = page_repo
        self._dpi = dpi
        self._native_text_min_chars = native_text_min_chars
        self._ocr_provider = ocr_provider

    def render(
        self,
        processing_document: ProcessingDocument,
        document: Document,
        checkpoint: Callable[[], None] | None = None,
    ) -> list[DocumentPage]:
        """Render every page, store the images and replace the current page rows.

        The checkpoint runs after each page so a cancellation can stop long
        renders early.
        """
        data = self._blob_store.download(document.storage_key)
        pages: list[DocumentPage] = []
        for rendered in self._renderer.render(data, document.mime_type, self._dpi):
            key = page_key(
                document.tenant_id,
                document.company_id,
                document.id,
                self._dpi,
                rendered.page_number,
            )
            self._blob_store.upload(key, rendered.image_png, "image/png")
            decision = decide_text_acquisition(rendered, self._native_text_min_chars)
            pages.append(
                DocumentPage(
                    id=str(uuid4()),
                    processing_document_id=processing_document.id,
                    page_number=rendered.page_number,
                    width_px=rendered.width_px,
                    height_px=rendered.height_px,
                    rotation_deg=rendered.rotation_deg,
                    render_dpi=self._dpi,
                    storage_key=key,
                    fingerprint=self._hasher.fingerprint_image(rendered.image_png),
                    text_acquisition=decision,
                    native_text=rendered.native_text,
                    ocr_provider=(
                        self._ocr_provider if decision is TextAcquisitionDecision.OCR else None
                    ),
                )
            )
            if checkpoint is not None:
                checkpoint()

        if not pages:
            raise RenderError(f"Document {document.id} has no pages")

        stored = self._page_repo.replace_pages(processing_document.id, pages)
        ocr_pages = sum(
            1 for page in stored if page.text_acquisition is TextAcquisitionDecision.OCR
        )
        Log.info(
            f"Rendered {len(stored)} pages ({ocr_pages} need OCR)",
            document=processing_document.id,
            dpi=self._dpi,
        )
        return stored

    def assign_pages(
        self, child: ProcessingDocument, parent_pages: list[DocumentPage]
    ) -> list[DocumentPage]:
        """Give a child its own page rows for its slice of the parent, numbered from 1."""
        page_range = child.page_range
        if page_range is None:
            raise RenderError(f"Child document {child.id} has no page range")
        pages = [
            replace(
                page,
                id=str(uuid4()),
                processing_document_id=child.id,
                page_number=page.page_number - page_range.page_from + 1,
                created_at=None,
                superseded_at=None,
            )
            for page in select_range(parent_pages, page_range)
        ]
        return self._page_repo.replace_pages(child.id, pages)

    def current_pages(self, processing_document_id: str) -> list[DocumentPage]:
        return self._page_repo.list_current(processing_document_id)


def select_range(pages: list[DocumentPage], page_range: PageRange) -> list[DocumentPage]:
    selected = [
        page for page in pages if page_range.page_from <= page.page_number <= page_range.page_to
    ]
    if len(selected) != page_range.page_count:
        raise RenderError(
            f"Pages {page_range.page_from}-{page_range.page_to} are missing from the render"
        )
    return sorted(selected, key=lambda page: page.page_number)


def content_fingerprints(pages: list[DocumentPage]) -> list[str]:
    """Fingerprints of the pages that carry content, blank pages excluded."""
    return [page.fingerprint for page in pages if not page.is_blank]
