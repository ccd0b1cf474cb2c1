"""Read-only, tenant-scoped views of the pipeline for the outer API layer."""

import math
from dataclasses import dataclass

from docflow.config.settings import Settings
from docflow.database.models import (
    DocumentPage,
    DocumentRevision,
    ProcessingDocument,
    ProcessingDocumentFilter,
    StateEvent,
)
from docflow.database.repositories.page_repository import PageRepository
from docflow.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docflow.database.repositories.revision_repository import RevisionRepository
from docflow.exceptions import (
    InvalidRequestError,
    PermissionDeniedError,
    ProcessingDocumentNotFoundError,
)
from docflow.storage.base import BaseBlobStore
from docflow.storage.factory import BlobStoreFactory

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class Page:
    items: list[ProcessingDocument]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


@dataclass(frozen=True)
class PageView:
    """Page metadata with a short-lived URL to the rendered image."""

    page: DocumentPage
    image_url: str


class ProcessingQueries:
    def __init__(
        self,
        processing_repo: ProcessingDocumentRepository,
        page_repo: PageRepository,
        revision_repo: RevisionRepository,
        blob_store: BaseBlobStore,
        url_expiry_seconds: int = 900,
    ) -> None:
        self._processing_repo = processing_repo
        self._page_repo = page_repo
        self._revision_repo = revision_repo
        self._blob_store = blob_store
        self._url_expiry_seconds = url_expiry_seconds

    def list_processing_documents(
        self,
        filters: ProcessingDocumentFilter,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page:
        if page < 1:
            raise InvalidRequestError("page must be 1 or greater")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidRequestError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        items, total = self._processing_repo.list_paged(filters, page, limit)
        return Page(items=items, page=page, limit=limit, total=total)

    def get_processing_document(
        self, tenant_id: str, processing_document_id: str
    ) -> ProcessingDocument:
        document = self._processing_repo.find_by_id(processing_document_id)
        if document is None:
            raise ProcessingDocumentNotFoundError(
                f"Processing document {processing_document_id} not found"
            )
        if document.tenant_id != tenant_id:
            raise PermissionDeniedError()
        return document

    def get_pages(self, tenant_id: str, processing_document_id: str) -> list[PageView]:
        document = self.get_processing_document(tenant_id, processing_document_id)
        return [
            PageView(
                page=page,
                image_url=self._blob_store.url(page.storage_key, self._url_expiry_seconds),
            )
            for page in self._page_repo.list_current(document.id)
        ]

    def get_history(self, tenant_id: str, processing_document_id: str) -> list[StateEvent]:
        document = self.get_processing_document(tenant_id, processing_document_id)
        return self._processing_repo.list_events(document.id)

    def get_revisions(
        self, tenant_id: str, processing_document_id: str
    ) -> list[DocumentRevision]:
        document = self.get_processing_document(tenant_id, processing_document_id)
        return self._revision_repo.list_for_document(document.id)


def build_queries(settings: Settings) -> ProcessingQueries:
    return ProcessingQueries(
        ProcessingDocumentRepository(),
        PageRepository(),
        RevisionRepository(),
        BlobStoreFactory.create(settings),
        url_expiry_seconds=settings.storage_url_expiry_seconds,
    )
