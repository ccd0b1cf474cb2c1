from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from docflow.config.settings import Settings
from docflow.database.models import (
    Document,
    DocumentRevision,
    DuplicateAction,
    DuplicateDecision,
    DuplicateStatus,
    PageRange,
    PipelineStatus,
    ProcessingDocument,
    ProcessingPriority,
    StateEvent,
    UploadSource,
)
from docflow.database.repositories.job_repository import JobRepository
from docflow.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docflow.dedup.detector import DuplicateResult
from docflow.events.sink import BaseEventSink, EventKind, PipelineEvent
from docflow.exceptions import (
    ConflictError,
    InvalidSplitPlanError,
    InvalidTransitionError,
    PermissionDeniedError,
    PipelineCancelledError,
    ProcessingDocumentNotFoundError,
    StaleLockVersionError,
)
from docflow.logging.logger import Log
from docflow.pipeline.hierarchy import DocumentArena
from docflow.pipeline.page_ranges import validate_partition
from docflow.pipeline.state_machine import is_terminal, validate_transition

RECLASSIFY_ANNOTATION_ONLY = "annotation_only"
RECLASSIFY_RESTART_PIPELINE = "restart_pipeline"

_MAX_ERROR_LENGTH = 2000

_DECISION_CHANGES: dict[DuplicateAction, dict[str, Any]] = {
    DuplicateAction.CONFIRM_DUPLICATE: {"duplicate_status": DuplicateStatus.CONFIRMED},
    DuplicateAction.REJECT_DUPLICATE: {
        "duplicate_status": DuplicateStatus.REJECTED,
        "duplicate_of_document_id": None,
    },
    DuplicateAction.MARK_AS_NEW_VERSION: {
        "duplicate_status": DuplicateStatus.NONE,
        "duplicate_of_document_id": None,
    },
}

# A compute function returns None for "nothing to do", or the target status
# (None keeps the current one) with the column changes to apply.
Outcome = tuple[PipelineStatus | None, dict[str, Any]] | None


@dataclass(frozen=True)
class ChildSpec:
    """What the splitter decided for one child of a container."""

    page_range: PageRange
    duplicate: DuplicateResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessingDocumentTracker:
    """Owns the lifecycle of processing documents.

    Every change is a compare-and-swap on lock_version. Worker-side calls
    (advance, fail, settle_parent and the other helpers) reload and retry on
    conflict; transition() is the strict variant for callers that present the
    version they last saw.
    """

    def __init__(
        self,
        processing_repo: ProcessingDocumentRepository,
        job_repo: JobRepository,
        event_sink: BaseEventSink,
        *,
        max_cas_retries: int = 5,
        reclassify_policy: str = RECLASSIFY_ANNOTATION_ONLY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if reclassify_policy not in (RECLASSIFY_ANNOTATION_ONLY, RECLASSIFY_RESTART_PIPELINE):
            raise ValueError(f"Unknown duplicate reclassify policy '{reclassify_policy}'")
        self._processing_repo = processing_repo
        self._job_repo = job_repo
        self._event_sink = event_sink
        self._max_cas_retries = max_cas_retries
        self._reclassify_policy = reclassify_policy
        self._clock = clock

    def create(
        self,
        document: Document,
        *,
        is_container: bool,
        duplicate: DuplicateResult,
        priority: ProcessingPriority = ProcessingPriority.NORMAL,
        source: UploadSource = UploadSource.WEB,
        split_ranges: list[PageRange] | None = None,
    ) -> ProcessingDocument:
        """Register a new top-level processing document in PENDING."""
        processing_document = ProcessingDocument(
            id=str(uuid4()),
            document_id=document.id,
            tenant_id=document.tenant_id,
            company_id=document.company_id,
            is_container=is_container,
            pipeline_status=PipelineStatus.PENDING,
            duplicate_status=duplicate.status,
            duplicate_of_document_id=duplicate.matched_document_id,
            priority=priority,
            source=source,
            split_ranges=split_ranges,
        )
        created = self._processing_repo.create(processing_document, trigger="upload")
        Log.info(
            "Processing document created",
            document=created.id,
            container=created.is_container,
            duplicate=created.duplicate_status.value,
        )
        return created

    def queue(self, processing_document_id: str) -> ProcessingDocument:
        """Move a pending document to QUEUED and hand it to the workers."""
        document = self.advance(processing_document_id, PipelineStatus.QUEUED, trigger="queued")
        self.dispatch(document)
        return document

    def dispatch(self, document: ProcessingDocument) -> None:
        self._job_repo.enqueue(document.id, document.priority)

    def create_children(
        self, parent: ProcessingDocument, specs: list[ChildSpec]
    ) -> list[ProcessingDocument]:
        """Create one QUEUED child per page range of a splitting container."""
        current = self.get(parent.id)
        if current.pipeline_status is not PipelineStatus.SPLITTING:
            raise InvalidTransitionError(
                f"Container {current.id} is {current.pipeline_status.value}, not splitting"
            )
        if current.page_count is None:
            raise InvalidSplitPlanError(f"Container {current.id} has not been rendered yet")
        validate_partition([spec.page_range for spec in specs], current.page_count)

        arena = self.load_hierarchy(current.id)
        if arena.children_of(current.id):
            raise ConflictError(f"Container {current.id} already has children")

        children = []
        for spec in sorted(specs, key=lambda item: item.page_range.page_from):
            child = ProcessingDocument(
                id=str(uuid4()),
                document_id=current.document_id,
                tenant_id=current.tenant_id,
                company_id=current.company_id,
                is_container=False,
                parent_id=current.id,
                page_from=spec.page_range.page_from,
                page_to=spec.page_range.page_to,
                page_count=spec.page_range.page_count,
                pipeline_status=PipelineStatus.QUEUED,
                duplicate_status=spec.duplicate.status,
                duplicate_of_document_id=spec.duplicate.matched_document_id,
                priority=current.priority,
                source=current.source,
            )
            arena.add(child)
            children.append(child)

        created = self._processing_repo.create_children(children, trigger="split")
        Log.info(f"Created {len(created)} child documents", container=current.id)
        for child in created:
            if child.duplicate_of_document_id is not None:
                self._emit(
                    EventKind.DUPLICATE_DETECTED,
                    child,
                    "Child pages already exist in another document",
                    matched_document_id=child.duplicate_of_document_id,
                )
        return created

    def get(self, processing_document_id: str) -> ProcessingDocument:
        document = self._processing_repo.find_by_id(processing_document_id)
        if document is None:
            raise ProcessingDocumentNotFoundError(
                f"Processing document {processing_document_id} not found"
            )
        return document

    def get_for_tenant(self, tenant_id: str, processing_document_id: str) -> ProcessingDocument:
        """Load a document on behalf of a tenant without leaking other tenants' data."""
        document = self.get(processing_document_id)
        if document.tenant_id != tenant_id:
            raise PermissionDeniedError()
        return document

    def children(self, parent_id: str) -> list[ProcessingDocument]:
        return self._processing_repo.find_children(parent_id)

    def history(self, processing_document_id: str) -> list[StateEvent]:
        return self._processing_repo.list_events(processing_document_id)

    def load_hierarchy(self, processing_document_id: str) -> DocumentArena:
        """Load the whole tree containing a document into an arena."""
        root = self.get(processing_document_id)
        lineage = [root]
        while lineage[-1].parent_id is not None:
            lineage.append(self.get(lineage[-1].parent_id))

        arena = DocumentArena()
        for document in reversed(lineage):
            arena.add(document)
        pending = deque([lineage[-1].id])
        while pending:
            current_id = pending.popleft()
            for child in self._processing_repo.find_children(current_id):
                arena.add(child)
                pending.append(child.id)
        return arena

    def transition(
        self,
        processing_document_id: str,
        expected_lock_version: int,
        target: PipelineStatus,
        trigger: str,
    ) -> ProcessingDocument:
        """Strict transition: fails if the document moved since the caller read it.

        Queueing a failed document again is a retry and goes through requeue().
        """
        document = self.get(processing_document_id)
        if document.lock_version != expected_lock_version:
            raise StaleLockVersionError(
                f"Processing document {document.id} is at lock version "
                f"{document.lock_version}, expected {expected_lock_version}"
            )
        if document.pipeline_status is PipelineStatus.FAILED and target is PipelineStatus.QUEUED:
            return self.requeue(document.id, expected_lock_version, trigger=trigger)
        validate_transition(document, target)
        return self._apply(document, target, trigger, {})

    def advance(
        self,
        processing_document_id: str,
        target: PipelineStatus,
        trigger: str,
        changes: dict[str, Any] | None = None,
    ) -> ProcessingDocument:
        """Move to target, reloading on conflicts. A no-op if already there."""

        def compute(document: ProcessingDocument) -> Outcome:
            if document.pipeline_status is target:
                return None
            if document.pipeline_status is PipelineStatus.FAILED:
                raise InvalidTransitionError(
                    f"Document {document.id} has failed, only a retry can queue it again"
                )
            return target, dict(changes or {})

        return self._mutate(processing_document_id, trigger, compute)

    def fail(
        self, processing_document_id: str, error: str, stage: str | None = None
    ) -> ProcessingDocument:
        """Record a failure. Documents already in a terminal state are left alone."""

        def compute(document: ProcessingDocument) -> Outcome:
            if is_terminal(document.pipeline_status):
                return None
            return PipelineStatus.FAILED, {
                "last_error": error[:_MAX_ERROR_LENGTH],
                "error_stage": stage or document.pipeline_status.value,
                "failed_at": self._clock(),
            }

        document = self._mutate(processing_document_id, "failed", compute)
        if document.pipeline_status is PipelineStatus.FAILED and document.parent_id:
            self.settle_parent(document.parent_id)
        return document

    def requeue(
        self,
        processing_document_id: str,
        expected_lock_version: int | None = None,
        trigger: str = "retry",
    ) -> ProcessingDocument:
        """Manual retry of a failed document. Counts the retry and dispatches a job."""

        def compute(document: ProcessingDocument) -> Outcome:
            if expected_lock_version is not None and document.lock_version != expected_lock_version:
                raise StaleLockVersionError(
                    f"Processing document {document.id} is at lock version "
                    f"{document.lock_version}, expected {expected_lock_version}"
                )
            if document.pipeline_status is not PipelineStatus.FAILED:
                raise InvalidTransitionError(
                    f"Only failed documents can be retried, {document.id} is "
                    f"{document.pipeline_status.value}"
                )
            return PipelineStatus.QUEUED, {
                "retry_count": document.retry_count + 1,
                "last_error": None,
                "error_stage": None,
                "failed_at": None,
                "cancel_requested": False,
                "cancel_reason": None,
            }

        document = self._mutate(processing_document_id, trigger, compute)
        self.dispatch(document)
        return document

    def complete_with_revision(
        self, processing_document_id: str, revision: DocumentRevision
    ) -> ProcessingDocument:
        """Store the extraction revision and finish the document in one write.

        The revision is only kept if the document actually moves to COMPLETED.
        """
        self.raise_if_cancelled(processing_document_id)

        def compute(document: ProcessingDocument) -> Outcome:
            if document.pipeline_status is PipelineStatus.COMPLETED:
                return None
            return PipelineStatus.COMPLETED, {"current_revision_id": revision.id}

        document = self._mutate(
            processing_document_id, "extraction_completed", compute, revision=revision
        )
        if document.parent_id:
            self.settle_parent(document.parent_id)
        return document

    def settle_parent(self, parent_id: str) -> ProcessingDocument:
        """Finish a splitting container once every child is terminal."""

        def compute(parent: ProcessingDocument) -> Outcome:
            if parent.pipeline_status is not PipelineStatus.SPLITTING:
                return None
            children = self._processing_repo.find_children(parent.id)
            if not children or not all(is_terminal(c.pipeline_status) for c in children):
                return None
            failed = [c for c in children if c.pipeline_status is PipelineStatus.FAILED]
            if not failed:
                return PipelineStatus.COMPLETED, {}
            return PipelineStatus.FAILED, {
                "last_error": f"{len(failed)} of {len(children)} child documents failed",
                "error_stage": PipelineStatus.SPLITTING.value,
                "failed_at": self._clock(),
            }

        return self._mutate(parent_id, "children_settled", compute)

    def record_page_count(self, processing_document_id: str, page_count: int) -> ProcessingDocument:
        def compute(document: ProcessingDocument) -> Outcome:
            if document.page_count == page_count:
                return None
            return None, {"page_count": page_count}

        return self._mutate(processing_document_id, "pages_rendered", compute)

    def set_split_plan(
        self, processing_document_id: str, ranges: list[PageRange]
    ) -> ProcessingDocument:
        """Store explicit child ranges for a container that has not been split yet."""

        def compute(document: ProcessingDocument) -> Outcome:
            if not document.is_container:
                raise InvalidSplitPlanError(f"Document {document.id} is not a container")
            if document.pipeline_status not in (PipelineStatus.PENDING, PipelineStatus.QUEUED):
                raise InvalidTransitionError(
                    f"Container {document.id} is already {document.pipeline_status.value}"
                )
            if document.page_count is not None:
                validate_partition(ranges, document.page_count)
            return None, {"split_ranges": sorted(ranges, key=lambda item: item.page_from)}

        return self._mutate(processing_document_id, "split_plan_set", compute)

    def reclassify_duplicate(
        self, processing_document_id: str, duplicate: DuplicateResult
    ) -> ProcessingDocument:
        """Update the duplicate annotation after the fact.

        Pipeline state is untouched unless the restart policy is configured,
        in which case a failed document is queued again.
        """

        def compute(document: ProcessingDocument) -> Outcome:
            if (
                document.duplicate_status is duplicate.status
                and document.duplicate_of_document_id == duplicate.matched_document_id
            ):
                return None
            return None, {
                "duplicate_status": duplicate.status,
                "duplicate_of_document_id": duplicate.matched_document_id,
            }

        document = self._mutate(processing_document_id, "duplicate_reclassified", compute)
        if duplicate.is_duplicate:
            self._emit(
                EventKind.DUPLICATE_DETECTED,
                document,
                "Duplicate classification updated",
                matched_document_id=duplicate.matched_document_id,
            )
        if (
            self._reclassify_policy == RECLASSIFY_RESTART_PIPELINE
            and document.pipeline_status is PipelineStatus.FAILED
        ):
            return self.requeue(document.id)
        return document

    def record_duplicate_decision(
        self, decision: DuplicateDecision, expected_lock_version: int | None = None
    ) -> ProcessingDocument:
        """Settle a suspected duplicate with a reviewer's decision.

        The decision row and the new duplicate status are written together.
        Only the suspicion currently on the document can be decided, once.
        """
        processing_document_id = decision.processing_document_id

        def compute(document: ProcessingDocument) -> Outcome:
            if expected_lock_version is not None and document.lock_version != expected_lock_version:
                raise StaleLockVersionError(
                    f"Processing document {document.id} is at lock version "
                    f"{document.lock_version}, expected {expected_lock_version}"
                )
            if document.duplicate_status is not DuplicateStatus.DUPLICATE:
                raise InvalidTransitionError(
                    f"Document {document.id} is not a suspected duplicate "
                    f"({document.duplicate_status.value})"
                )
            if document.duplicate_of_document_id != decision.suspected_of_document_id:
                raise ConflictError(
                    f"Document {document.id} is suspected of duplicating "
                    f"{document.duplicate_of_document_id}, not "
                    f"{decision.suspected_of_document_id}"
                )
            return None, dict(_DECISION_CHANGES[decision.action])

        document = self._mutate(
            processing_document_id, "duplicate_decision", compute, decision=decision
        )
        self._emit(
            EventKind.DUPLICATE_DECIDED,
            document,
            f"Duplicate decision: {decision.action.value}",
            suspected_of_document_id=decision.suspected_of_document_id,
            decided_by=decision.decided_by,
        )
        return document

    def clear_duplicate_references(self, document_id: str) -> int:
        """Reset pending suspicions that point at a document being removed."""
        cleared = self._processing_repo.clear_duplicate_references(document_id)
        if cleared:
            Log.info(
                f"Cleared {cleared} duplicate references to a removed document",
                document=document_id,
            )
        return cleared

    def decisions(self, processing_document_id: str) -> list[DuplicateDecision]:
        return self._processing_repo.list_decisions(processing_document_id)

    def request_cancellation(self, processing_document_id: str, reason: str) -> ProcessingDocument:
        """Ask for a document and its descendants to stop.

        Documents that have not started are failed right away. Running ones
        stop at their next checkpoint.
        """
        arena = self.load_hierarchy(processing_document_id)
        targets = [arena.get(processing_document_id), *arena.descendants_of(processing_document_id)]
        for target in targets:
            self._flag_cancellation(target.id, reason)
        for target in reversed(targets):
            if target.is_container:
                self.settle_parent(target.id)
        document = self.get(processing_document_id)
        if document.pipeline_status is PipelineStatus.FAILED and document.parent_id:
            self.settle_parent(document.parent_id)
        return document

    def raise_if_cancelled(self, processing_document_id: str) -> None:
        """Checkpoint: fail the document and stop if cancellation was requested."""
        document = self.get(processing_document_id)
        if not document.cancel_requested:
            return
        reason = document.cancel_reason or "cancelled"
        self.fail(processing_document_id, f"Cancelled: {reason}")
        raise PipelineCancelledError(f"Processing document {processing_document_id} was cancelled")

    def _flag_cancellation(self, processing_document_id: str, reason: str) -> ProcessingDocument:
        def compute(document: ProcessingDocument) -> Outcome:
            if is_terminal(document.pipeline_status) or document.cancel_requested:
                return None
            changes: dict[str, Any] = {"cancel_requested": True, "cancel_reason": reason}
            if document.pipeline_status in (PipelineStatus.PENDING, PipelineStatus.QUEUED):
                changes.update(
                    last_error=f"Cancelled: {reason}",
                    error_stage=document.pipeline_status.value,
                    failed_at=self._clock(),
                )
                return PipelineStatus.FAILED, changes
            return None, changes

        return self._mutate(processing_document_id, "cancellation_requested", compute)

    def _mutate(
        self,
        processing_document_id: str,
        trigger: str,
        compute: Callable[[ProcessingDocument], Outcome],
        revision: DocumentRevision | None = None,
        decision: DuplicateDecision | None = None,
    ) -> ProcessingDocument:
        for attempt in range(1, self._max_cas_retries + 1):
            document = self.get(processing_document_id)
            outcome = compute(document)
            if outcome is None:
                return document
            target, changes = outcome
            if target is not None:
                validate_transition(document, target)
            try:
                return self._apply(document, target, trigger, changes, revision, decision)
            except StaleLockVersionError:
                Log.debug(
                    f"Lock version conflict on attempt {attempt}, reloading",
                    document=processing_document_id,
                )
        raise StaleLockVersionError(
            f"Processing document {processing_document_id} kept changing; "
            f"gave up after {self._max_cas_retries} attempts"
        )

    def _apply(
        self,
        document: ProcessingDocument,
        target: PipelineStatus | None,
        trigger: str,
        changes: dict[str, Any],
        revision: DocumentRevision | None = None,
        decision: DuplicateDecision | None = None,
    ) -> ProcessingDocument:
        event = None
        if target is not None:
            changes = {**changes, "pipeline_status": target}
            event = StateEvent(
                processing_document_id=document.id,
                from_status=document.pipeline_status,
                to_status=target,
                trigger=trigger,
                lock_version=document.lock_version + 1,
            )
        updated = self._processing_repo.compare_and_swap(
            document.id, document.lock_version, changes, event, revision, decision
        )
        if target is not None:
            self._emit(
                EventKind.STAGE_TRANSITION,
                updated,
                f"{document.pipeline_status.value} -> {target.value}",
                trigger=trigger,
            )
            if is_terminal(target):
                self._emit(
                    EventKind.TERMINAL_STATE,
                    updated,
                    f"Document reached {target.value}",
                    error=updated.last_error,
                )
        return updated

    def _emit(
        self, kind: EventKind, document: ProcessingDocument, summary: str, **details: object
    ) -> None:
        self._event_sink.emit(
            PipelineEvent(
                kind=kind,
                tenant_id=document.tenant_id,
                processing_document_id=document.id,
                summary=summary,
                details=details,
            )
        )


def build_tracker(settings: Settings, event_sink: BaseEventSink) -> ProcessingDocumentTracker:
    """Build a tracker backed by the database repositories."""
    return ProcessingDocumentTracker(
        ProcessingDocumentRepository(),
        JobRepository(settings.max_job_attempts),
        event_sink,
        max_cas_retries=settings.max_cas_retries,
        reclassify_policy=settings.duplicate_reclassify_policy,
    )
