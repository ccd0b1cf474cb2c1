from uuid import uuid4

from docflow.database.models import (
    DocumentPage,
    DocumentRevision,
    PipelineStatus,
    ProcessingDocument,
)
from docflow.database.repositories.document_repository import DocumentRepository
from docflow.dedup.detector import DuplicateDetector
from docflow.exceptions import DocumentNotFoundError
from docflow.extraction.base import BaseExtractor
from docflow.extraction.models import ExtractionRequest, PageInput
from docflow.logging.logger import Log
from docflow.pipeline.page_ranges import plan_ranges, validate_partition
from docflow.pipeline.page_splitter import PageSplitter, content_fingerprints, select_range
from docflow.pipeline.pipeline import PipelineContext, PipelineStep
from docflow.pipeline.tracker import ChildSpec, ProcessingDocumentTracker
from docflow.storage.base import BaseBlobStore


class LoadDocumentStep(PipelineStep):
    def __init__(
        self,
        tracker: ProcessingDocumentTracker,
        document_repo: DocumentRepository,
    ) -> None:
        self._tracker = tracker
        self._document_repo = document_repo

    def run(self, context: PipelineContext) -> PipelineContext:
        processing_document = self._tracker.get(context.processing_document_id)
        document = self._document_repo.find_by_id(processing_document.document_id)
        if document is None or document.deleted_at is not None:
            raise DocumentNotFoundError(f"Document {processing_document.document_id} not found")
        context.processing_document = processing_document
        context.document = document
        Log.info(
            f"Loaded {document.original_filename} ({document.size_bytes} bytes)",
            document=processing_document.id,
        )
        return context


class BeginStageStep(PipelineStep):
    """Moves a queued document into its working stage. Resumed jobs pass through."""

    def __init__(self, tracker: ProcessingDocumentTracker, stage: PipelineStatus) -> None:
        self._tracker = tracker
        self._stage = stage

    def run(self, context: PipelineContext) -> PipelineContext:
        context.processing_document = self._tracker.advance(
            context.processing_document_id,
            self._stage,
            trigger=f"job:{context.job_id}",
        )
        return context


class PreparePagesStep(PipelineStep):
    """Renders top-level documents. Children reuse their slice of the parent's pages."""

    def __init__(self, splitter: PageSplitter, tracker: ProcessingDocumentTracker) -> None:
        self._splitter = splitter
        self._tracker = tracker

    def run(self, context: PipelineContext) -> PipelineContext:
        if context.processing_document is None or context.document is None:
            raise ValueError("PipelineContext.document must be loaded before preparing pages")
        processing_document = context.processing_document

        if processing_document.parent_id is not None:
            pages = self._splitter.current_pages(processing_document.id)
            if not pages:
                parent_pages = self._splitter.current_pages(processing_document.parent_id)
                pages = self._splitter.assign_pages(processing_document, parent_pages)
            context.pages = pages
            return context

        document_id = processing_document.id
        context.pages = self._splitter.render(
            processing_document,
            context.document,
            checkpoint=lambda: self._tracker.raise_if_cancelled(document_id),
        )
        context.processing_document = self._tracker.record_page_count(
            document_id, len(context.pages)
        )
        return context


class CreateChildrenStep(PipelineStep):
    """Splits a rendered container into child documents and queues them.

    Safe to run again: existing children are kept, failed ones are retried.
    """

    def __init__(
        self,
        tracker: ProcessingDocumentTracker,
        splitter: PageSplitter,
        detector: DuplicateDetector,
        split_per_page: bool = True,
    ) -> None:
        self._tracker = tracker
        self._splitter = splitter
        self._detector = detector
        self._split_per_page = split_per_page

    def run(self, context: PipelineContext) -> PipelineContext:
        if context.processing_document is None:
            raise ValueError("PipelineContext.processing_document must be set before splitting")
        parent = context.processing_document
        pages = context.pages

        existing = self._tracker.children(parent.id)
        if existing:
            context.children = self._resume_children(parent.id, existing, pages)
        else:
            context.children = self._create_children(parent, pages)

        context.processing_document = self._tracker.settle_parent(parent.id)
        return context

    def _create_children(
        self, parent: ProcessingDocument, pages: list[DocumentPage]
    ) -> list[ProcessingDocument]:
        ranges = plan_ranges(len(pages), parent.split_ranges, self._split_per_page)
        specs = [
            ChildSpec(
                page_range=page_range,
                duplicate=self._detector.classify_pages(
                    content_fingerprints(select_range(pages, page_range)),
                    parent.tenant_id,
                    exclude_document_id=parent.document_id,
                ),
            )
            for page_range in ranges
        ]
        children = self._tracker.create_children(parent, specs)
        for child in children:
            self._splitter.assign_pages(child, pages)
        for child in children:
            self._tracker.dispatch(child)
        return children

    def _resume_children(
        self,
        parent_id: str,
        existing: list[ProcessingDocument],
        pages: list[DocumentPage],
    ) -> list[ProcessingDocument]:
        validate_partition(
            [child.page_range for child in existing if child.page_range is not None],
            len(pages),
        )
        Log.info(f"Resuming split with {len(existing)} existing children", container=parent_id)
        children: list[ProcessingDocument] = []
        for child in existing:
            if not self._splitter.current_pages(child.id):
                self._splitter.assign_pages(child, pages)
            if child.pipeline_status is PipelineStatus.FAILED:
                child = self._tracker.requeue(child.id)
            elif child.pipeline_status is PipelineStatus.QUEUED:
                self._tracker.dispatch(child)
            children.append(child)
        return children


class CancellationCheckpointStep(PipelineStep):
    def __init__(self, tracker: ProcessingDocumentTracker) -> None:
        self._tracker = tracker

    def run(self, context: PipelineContext) -> PipelineContext:
        self._tracker.raise_if_cancelled(context.processing_document_id)
        return context


class ExtractStep(PipelineStep):
    def __init__(
        self,
        extractor: BaseExtractor,
        blob_store: BaseBlobStore,
        max_pages: int = 20,
    ) -> None:
        self._extractor = extractor
        self._blob_store = blob_store
        self._max_pages = max_pages

    def run(self, context: PipelineContext) -> PipelineContext:
        if context.processing_document is None or context.document is None:
            raise ValueError("PipelineContext.document must be loaded before extraction")
        page_inputs = []
        for index, page in enumerate(context.pages):
            image = None
            if index < self._max_pages and not page.is_blank:
                image = self._blob_store.download(page.storage_key)
            page_inputs.append(
                PageInput(
                    page_number=page.page_number,
                    text_acquisition=page.text_acquisition,
                    native_text=page.native_text,
                    image_png=image,
                )
            )
        request = ExtractionRequest(
            processing_document_id=context.processing_document.id,
            tenant_id=context.processing_document.tenant_id,
            file_name=context.document.original_filename,
            mime_type=context.document.mime_type,
            pages=page_inputs,
        )
        context.extraction_result = self._extractor.extract(request)
        return context


class PersistRevisionStep(PipelineStep):
    def __init__(self, tracker: ProcessingDocumentTracker) -> None:
        self._tracker = tracker

    def run(self, context: PipelineContext) -> PipelineContext:
        result = context.extraction_result
        if result is None:
            raise ValueError("PipelineContext.extraction_result must be set before persist")
        usage = result.usage
        revision = DocumentRevision(
            id=str(uuid4()),
            processing_document_id=context.processing_document_id,
            category=result.category,
            document_number=result.document_number,
            document_date=result.document_date,
            currency=result.currency,
            subtotal=result.subtotal,
            tax_amount=result.tax_amount,
            total_amount=result.total_amount,
            counterparties=list(result.counterparties),
            extraction_model=usage.model if usage else "",
            input_tokens=usage.input_tokens if usage else 0,
            output_tokens=usage.output_tokens if usage else 0,
        )
        context.processing_document = self._tracker.complete_with_revision(
            context.processing_document_id, revision
        )
        Log.info(
            f"Stored revision for {result.category.value} document",
            document=context.processing_document_id,
        )
        return context
