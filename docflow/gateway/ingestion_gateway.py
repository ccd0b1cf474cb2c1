import json
from dataclasses import dataclass
from uuid import uuid4

from docflow.config.settings import Settings
from docflow.database.models import Document, ProcessingDocument
from docflow.database.repositories.document_repository import DocumentRepository
from docflow.database.repositories.idempotency_repository import IdempotencyRepository
from docflow.database.repositories.page_repository import PageRepository
from docflow.dedup.detector import DuplicateDetector, DuplicateResult
from docflow.events.sink import BaseEventSink, EventKind, LoggingEventSink, PipelineEvent
from docflow.exceptions import InvalidRequestError, InvalidSplitPlanError
from docflow.gateway.idempotency import IdempotencyStore
from docflow.gateway.models import SubmitRequest, SubmitResponse
from docflow.hashing.hasher import ContentHasher
from docflow.logging.logger import Log
from docflow.pipeline.page_ranges import validate_partition
from docflow.pipeline.tracker import ProcessingDocumentTracker, build_tracker
from docflow.rendering.base import PDF_MIME_TYPE
from docflow.storage.base import BaseBlobStore
from docflow.storage.factory import BlobStoreFactory
from docflow.storage.keys import original_key

SUBMIT_ENDPOINT = "/documents"
SUBMIT_METHOD = "POST"
ACCEPTED = 202
DUPLICATE_MESSAGE = "An exact duplicate of this file already exists"
INGESTION_STAGE = "ingestion"
_MAX_FILENAME_LENGTH = 255


@dataclass(frozen=True)
class _Ingested:
    storage_key: str
    document: Document
    processing_document: ProcessingDocument
    duplicate: DuplicateResult


class IngestionGateway:
    """Entry point for uploads.

    Validates the request, stores the original, registers the document,
    classifies duplicates and queues the processing document. Requests with
    an idempotency key run at most once per key.
    """

    def __init__(
        self,
        blob_store: BaseBlobStore,
        hasher: ContentHasher,
        document_repo: DocumentRepository,
        detector: DuplicateDetector,
        tracker: ProcessingDocumentTracker,
        idempotency: IdempotencyStore,
        event_sink: BaseEventSink,
        *,
        max_file_size_bytes: int = 50 * 1024 * 1024,
        allowed_mime_types: list[str] | None = None,
        pdf_uploads_are_containers: bool = True,
    ) -> None:
        self._blob_store = blob_store
        self._hasher = hasher
        self._document_repo = document_repo
        self._detector = detector
        self._tracker = tracker
        self._idempotency = idempotency
        self._event_sink = event_sink
        self._max_file_size_bytes = max_file_size_bytes
        self._allowed_mime_types = set(
            allowed_mime_types or [PDF_MIME_TYPE, "image/png", "image/jpeg", "image/tiff"]
        )
        self._pdf_uploads_are_containers = pdf_uploads_are_containers

    def submit(self, request: SubmitRequest) -> SubmitResponse:
        """Accept an upload and return a 202 response.

        Raises:
            InvalidRequestError: if the request fails validation. Nothing is stored.
            IdempotencyKeyMismatchError: if the key was used for another request.
            IdempotencyInProgressError: if the same key is still being handled.
        """
        self._validate(request)
        content_hash = self._hasher.hash_bytes(request.file_bytes)

        key = request.idempotency_key
        if key is None:
            return self._publish(request, self._ingest(request, content_hash))

        request_hash = self._request_hash(request, content_hash)
        while True:
            claim = self._idempotency.begin(
                request.tenant_id, key, SUBMIT_ENDPOINT, SUBMIT_METHOD, request_hash
            )
            if claim.is_complete:
                Log.info("Replaying stored response", tenant=request.tenant_id, key=key)
                return SubmitResponse(
                    status_code=claim.status_code or ACCEPTED,
                    body=claim.response_body or "",
                    replayed=True,
                )

            try:
                ingested = self._ingest(request, content_hash)
            except Exception:
                self._idempotency.abandon(claim)
                raise
            body = self._response_body(ingested.processing_document, ingested.duplicate)
            if self._idempotency.complete(claim, ACCEPTED, body):
                return self._publish(request, ingested)

            # Another request took the key over while this one was running.
            # Its upload is the one that counts.
            self._discard(
                ingested.storage_key,
                ingested.document,
                ingested.processing_document,
                "Idempotency key was taken over by another request",
            )

    def _ingest(self, request: SubmitRequest, content_hash: str) -> _Ingested:
        document_id = str(uuid4())
        storage_key = original_key(
            request.tenant_id,
            request.company_id,
            document_id,
            request.filename,
            request.mime_type,
        )
        self._blob_store.upload(storage_key, request.file_bytes, request.mime_type)

        document: Document | None = None
        processing_document: ProcessingDocument | None = None
        try:
            duplicate = self._detector.classify(
                content_hash, request.tenant_id, request.company_id
            )
            document = self._document_repo.create(
                Document(
                    id=document_id,
                    tenant_id=request.tenant_id,
                    company_id=request.company_id,
                    original_filename=request.filename,
                    mime_type=request.mime_type,
                    size_bytes=len(request.file_bytes),
                    storage_key=storage_key,
                    content_hash=content_hash,
                )
            )
            processing_document = self._tracker.create(
                document,
                is_container=self._is_container(request),
                duplicate=duplicate,
                priority=request.priority,
                source=request.source,
                split_ranges=request.split_ranges,
            )
            processing_document = self._tracker.queue(processing_document.id)
        except Exception as exc:
            self._discard(
                storage_key, document, processing_document, f"Ingestion failed: {exc}"
            )
            raise

        return _Ingested(storage_key, document, processing_document, duplicate)

    def _publish(self, request: SubmitRequest, ingested: _Ingested) -> SubmitResponse:
        self._announce(request, ingested.processing_document, ingested.duplicate)
        return SubmitResponse(
            status_code=ACCEPTED,
            body=self._response_body(ingested.processing_document, ingested.duplicate),
        )

    def _validate(self, request: SubmitRequest) -> None:
        if not request.tenant_id or not request.company_id:
            raise InvalidRequestError("Tenant and company are required")
        if not request.file_bytes:
            raise InvalidRequestError("File is empty")
        if len(request.file_bytes) > self._max_file_size_bytes:
            raise InvalidRequestError(
                f"File is {len(request.file_bytes)} bytes, the limit is "
                f"{self._max_file_size_bytes} bytes"
            )
        filename = request.filename.strip()
        if not filename or len(filename) > _MAX_FILENAME_LENGTH or "/" in filename:
            raise InvalidRequestError("Filename is missing or invalid")
        if request.mime_type not in self._allowed_mime_types:
            raise InvalidRequestError(f"File type '{request.mime_type}' is not allowed")

        if request.split_ranges is not None:
            if not self._is_container(request):
                raise InvalidRequestError("Split ranges are only accepted for container uploads")
            if not request.split_ranges:
                raise InvalidRequestError("Split ranges must not be empty")
            last_page = max(page_range.page_to for page_range in request.split_ranges)
            try:
                validate_partition(request.split_ranges, last_page)
            except InvalidSplitPlanError as exc:
                raise InvalidRequestError(str(exc)) from exc

    def _is_container(self, request: SubmitRequest) -> bool:
        if request.is_container is not None:
            return request.is_container
        return request.mime_type == PDF_MIME_TYPE and self._pdf_uploads_are_containers

    def _discard(
        self,
        storage_key: str,
        document: Document | None,
        processing_document: ProcessingDocument | None,
        reason: str,
    ) -> None:
        """Undo an upload: fail its processing document and remove what was stored."""
        Log.warning(f"{reason}, removing original", key=storage_key)
        try:
            if processing_document is not None:
                self._tracker.fail(processing_document.id, reason, stage=INGESTION_STAGE)
            if document is not None:
                self._document_repo.soft_delete(document.id)
                self._tracker.clear_duplicate_references(document.id)
            self._blob_store.delete(storage_key)
        except Exception as exc:
            Log.error(f"Cleanup after failed ingestion did not finish: {exc}", key=storage_key)
        try:
            if document is not None:
                self._document_repo.soft_delete(document.id)
            self._blob_store.delete(storage_key)
        except Exception as exc:
            Log.error(f"Cleanup after failed ingestion did not finish: {exc}", key=storage_key)

    def _announce(
        self,
        request: SubmitRequest,
        processing_document: ProcessingDocument,
        duplicate: DuplicateResult,
    ) -> None:
        self._event_sink.emit(
            PipelineEvent(
                kind=EventKind.UPLOAD_ACCEPTED,
                tenant_id=processing_document.tenant_id,
                processing_document_id=processing_document.id,
                summary=f"Accepted {request.filename}",
                details={
                    "source": request.source.value,
                    "container": processing_document.is_container,
                },
            )
        )
        if duplicate.is_duplicate:
            self._event_sink.emit(
                PipelineEvent(
                    kind=EventKind.DUPLICATE_DETECTED,
                    tenant_id=processing_document.tenant_id,
                    processing_document_id=processing_document.id,
                    summary=DUPLICATE_MESSAGE,
                    details={"matched_document_id": duplicate.matched_document_id},
                )
            )

    @staticmethod
    def _response_body(
        processing_document: ProcessingDocument, duplicate: DuplicateResult
    ) -> str:
        warning = None
        if duplicate.is_duplicate:
            warning = {
                "originalDocumentId": duplicate.matched_document_id,
                "message": DUPLICATE_MESSAGE,
            }
        return json.dumps(
            {
                "processingDocumentId": processing_document.id,
                "documentId": processing_document.document_id,
                "pipelineStatus": processing_document.pipeline_status.value,
                "isContainer": processing_document.is_container,
                "duplicateWarning": warning,
            }
        )

    def _request_hash(self, request: SubmitRequest, content_hash: str) -> str:
        """Fingerprint of everything that makes two submissions the same request."""
        ranges = None
        if request.split_ranges is not None:
            ranges = [[item.page_from, item.page_to] for item in request.split_ranges]
        payload = {
            "company_id": request.company_id,
            "content_hash": content_hash,
            "filename": request.filename,
            "mime_type": request.mime_type,
            "priority": request.priority.value,
            "source": request.source.value,
            "is_container": request.is_container,
            "split_ranges": ranges,
        }
        return self._hasher.hash_bytes(json.dumps(payload, sort_keys=True).encode("utf-8"))


def build_gateway(
    settings: Settings,
    event_sink: BaseEventSink | None = None,
) -> IngestionGateway:
    """Build an IngestionGateway from settings. The connection pool must be open."""
    sink = event_sink or LoggingEventSink()
    document_repo = DocumentRepository()
    tracker = build_tracker(settings, sink)
    idempotency = IdempotencyStore(
        IdempotencyRepository(),
        ttl_hours=settings.idempotency_ttl_hours,
        lease_seconds=settings.idempotency_claim_lease_seconds,
        wait_seconds=settings.idempotency_wait_seconds,
        poll_interval_seconds=settings.idempotency_poll_interval_seconds,
    )
    return IngestionGateway(
        BlobStoreFactory.create(settings),
        ContentHasher(),
        document_repo,
        DuplicateDetector(
            document_repo, PageRepository(), scope_company=settings.duplicate_scope_company
        ),
        tracker,
        idempotency,
        sink,
        max_file_size_bytes=settings.max_file_size_bytes,
        allowed_mime_types=settings.allowed_mime_types,
        pdf_uploads_are_containers=settings.pdf_uploads_are_containers,
    )
