from docflow.config.settings import Settings
from docflow.database.models import PipelineStatus
from docflow.database.repositories.document_repository import DocumentRepository
from docflow.database.repositories.page_repository import PageRepository
from docflow.dedup.detector import DuplicateDetector
from docflow.events.sink import BaseEventSink, LoggingEventSink
from docflow.extraction.factory import ExtractorFactory
from docflow.hashing.hasher import ContentHasher
from docflow.logging.logger import Log
from docflow.pipeline.page_splitter import PageSplitter
from docflow.pipeline.pipeline import PipelineContext, PipelineStep
from docflow.pipeline.state_machine import is_terminal
from docflow.pipeline.steps import (
    BeginStageStep,
    CancellationCheckpointStep,
    CreateChildrenStep,
    ExtractStep,
    LoadDocumentStep,
    PersistRevisionStep,
    PreparePagesStep,
)
from docflow.pipeline.tracker import ProcessingDocumentTracker, build_tracker
from docflow.rendering.factory import PageRendererFactory
from docflow.storage.factory import BlobStoreFactory


class Processor:
    """Runs the pipeline for one processing document.

    Containers: load -> splitting -> render -> create children.
    Documents: load -> extracting -> pages -> checkpoint -> extract -> persist.
    """

    def __init__(
        self,
        tracker: ProcessingDocumentTracker,
        container_steps: list[PipelineStep],
        document_steps: list[PipelineStep],
    ) -> None:
        self._tracker = tracker
        self._container_steps = container_steps
        self._document_steps = document_steps

    @property
    def tracker(self) -> ProcessingDocumentTracker:
        return self._tracker

    def process(self, processing_document_id: str, job_id: int) -> PipelineContext:
        Log.info(f"Processing job {job_id}", document=processing_document_id)
        context = PipelineContext(processing_document_id=processing_document_id, job_id=job_id)

        current = self._tracker.get(processing_document_id)
        if is_terminal(current.pipeline_status):
            Log.info(
                f"Document already {current.pipeline_status.value}, nothing to do",
                document=processing_document_id,
            )
            context.processing_document = current
            return context

        steps = self._container_steps if current.is_container else self._document_steps
        for step in steps:
            context = step.run(context)
        return context


def build_processor(
    settings: Settings,
    event_sink: BaseEventSink | None = None,
) -> Processor:
    """Build a Processor with all required adapters."""
    document_repo = DocumentRepository()
    page_repo = PageRepository()
    blob_store = BlobStoreFactory.create(settings)
    tracker = build_tracker(settings, event_sink or LoggingEventSink())
    splitter = PageSplitter(
        PageRendererFactory.create(settings),
        blob_store,
        ContentHasher(),
        page_repo,
        dpi=settings.render_dpi,
        native_text_min_chars=settings.native_text_min_chars,
        ocr_provider=settings.ocr_provider,
    )
    detector = DuplicateDetector(
        document_repo, page_repo, scope_company=settings.duplicate_scope_company
    )
    extractor = ExtractorFactory.create(settings)

    container_steps: list[PipelineStep] = [
        LoadDocumentStep(tracker, document_repo),
        BeginStageStep(tracker, PipelineStatus.SPLITTING),
        PreparePagesStep(splitter, tracker),
        CreateChildrenStep(tracker, splitter, detector, settings.split_per_page),
    ]
    document_steps: list[PipelineStep] = [
        LoadDocumentStep(tracker, document_repo),
        BeginStageStep(tracker, PipelineStatus.EXTRACTING),
        PreparePagesStep(splitter, tracker),
        CancellationCheckpointStep(tracker),
        ExtractStep(extractor, blob_store, settings.extraction_max_pages),
        PersistRevisionStep(tracker),
    ]
    return Processor(tracker, container_steps, document_steps)
