from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from docflow.database.models import Document, DocumentPage, ProcessingDocument
from docflow.extraction.models import ExtractionResult


@dataclass(slots=True)
class PipelineContext:
    processing_document_id: str
    job_id: int
    processing_document: ProcessingDocument | None = None
    document: Document | None = None
    pages: list[DocumentPage] = field(default_factory=list)
    children: list[ProcessingDocument] = field(default_factory=list)
    extraction_result: ExtractionResult | None = None


class PipelineStep(ABC):
    @abstractmethod
    def run(self, context: PipelineContext) -> PipelineContext:
        raise NotImplementedError
