from collections import deque
from collections.abc import Iterator

from docflow.database.models import ProcessingDocument
from docflow.exceptions import InvalidRequestError, ProcessingDocumentNotFoundError


class DocumentArena:
    """Flat id-keyed table of a container tree.

    Documents refer to each other by id only. Parents must be added before
    their children, which rules out cycles. All traversal is iterative.
    """

    def __init__(self) -> None:
        self._documents: dict[str, ProcessingDocument] = {}
        self._children: dict[str, list[str]] = {}

    def __contains__(self, processing_document_id: object) -> bool:
        return processing_document_id in self._documents

    def __len__(self) -> int:
        return len(self._documents)

    def add(self, document: ProcessingDocument) -> None:
        existing = self._documents.get(document.id)
        if existing is not None:
            if existing.parent_id != document.parent_id:
                raise InvalidRequestError(f"Document {document.id} cannot be re-parented")
            self._documents[document.id] = document
            return
        if document.parent_id is not None:
            parent = self._documents.get(document.parent_id)
            if parent is None:
                raise InvalidRequestError(
                    f"Parent {document.parent_id} of document {document.id} is unknown"
                )
            if not parent.is_container:
                raise InvalidRequestError(
                    f"Document {parent.id} is not a container and cannot have children"
                )
            self._children.setdefault(parent.id, []).append(document.id)
        self._documents[document.id] = document

    def get(self, processing_document_id: str) -> ProcessingDocument:
        document = self._documents.get(processing_document_id)
        if document is None:
            raise ProcessingDocumentNotFoundError(
                f"Processing document {processing_document_id} not found"
            )
        return document

    def children_of(self, processing_document_id: str) -> list[ProcessingDocument]:
        child_ids = self._children.get(processing_document_id, [])
        return [self._documents[child_id] for child_id in child_ids]

    def ancestors_of(self, processing_document_id: str) -> list[str]:
        """Return ancestor ids, nearest first."""
        ancestors: list[str] = []
        current = self._documents.get(processing_document_id)
        while current is not None and current.parent_id is not None:
            ancestors.append(current.parent_id)
            current = self._documents.get(current.parent_id)
        return ancestors

    def descendants_of(self, processing_document_id: str) -> Iterator[ProcessingDocument]:
        """Yield descendants breadth-first."""
        pending = deque(self._children.get(processing_document_id, []))
        while pending:
            child_id = pending.popleft()
            yield self._documents[child_id]
            pending.extend(self._children.get(child_id, []))
