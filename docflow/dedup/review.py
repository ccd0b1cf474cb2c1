from dataclasses import dataclass
from uuid import uuid4

from docflow.config.settings import Settings
from docflow.database.models import (
    DuplicateAction,
    DuplicateDecision,
    DuplicateStatus,
    ProcessingDocument,
)
from docflow.database.repositories.document_repository import DocumentRepository
from docflow.events.sink import BaseEventSink, LoggingEventSink
from docflow.exceptions import InvalidRequestError
from docflow.logging.logger import Log
from docflow.pipeline.tracker import ProcessingDocumentTracker, build_tracker

_MAX_REASON_LENGTH = 1000


@dataclass(frozen=True)
class ApprovalCheck:
    allowed: bool
    reason: str | None = None


class DuplicateReview:
    """Reviewer decisions on suspected duplicates.

    The detector only ever suspects. A reviewer confirms the suspicion,
    rejects it, or keeps the upload as a new version of the original.
    Confirming removes the duplicate's document, and suspicions pointing
    at it are cleared.
    """

    def __init__(
        self,
        tracker: ProcessingDocumentTracker,
        document_repo: DocumentRepository,
    ) -> None:
        self._tracker = tracker
        self._document_repo = document_repo

    def decide(
        self,
        tenant_id: str,
        processing_document_id: str,
        suspected_of_document_id: str,
        action: DuplicateAction,
        decided_by: str,
        reason: str | None = None,
        expected_lock_version: int | None = None,
    ) -> ProcessingDocument:
        """Record a decision on the current suspicion.

        Raises:
            InvalidRequestError: if the decision is incomplete.
            PermissionDeniedError: if the document belongs to another tenant.
            InvalidTransitionError: if the document is not a pending suspect.
            ConflictError: if the suspicion points at another original, or the
                document changed since expected_lock_version.
        """
        if not suspected_of_document_id or not decided_by:
            raise InvalidRequestError("The suspected original and the reviewer are required")
        if reason is not None and len(reason) > _MAX_REASON_LENGTH:
            raise InvalidRequestError(f"Reason is longer than {_MAX_REASON_LENGTH} characters")
        self._tracker.get_for_tenant(tenant_id, processing_document_id)

        document = self._tracker.record_duplicate_decision(
            DuplicateDecision(
                id=str(uuid4()),
                processing_document_id=processing_document_id,
                suspected_of_document_id=suspected_of_document_id,
                action=action,
                decided_by=decided_by,
                reason=reason,
            ),
            expected_lock_version,
        )
        Log.info(
            f"Duplicate decision recorded: {action.value}",
            tenant=tenant_id,
            document=processing_document_id,
        )

        # Children share their container's document, which must stay.
        if action is DuplicateAction.CONFIRM_DUPLICATE and document.parent_id is None:
            self.remove_document(document.document_id)
        return document

    def remove_document(self, document_id: str) -> int:
        """Soft-delete a document and clear suspicions that point at it."""
        self._document_repo.soft_delete(document_id)
        return self._tracker.clear_duplicate_references(document_id)

    def can_approve(self, tenant_id: str, processing_document_id: str) -> ApprovalCheck:
        document = self._tracker.get_for_tenant(tenant_id, processing_document_id)
        if document.duplicate_status is DuplicateStatus.UNCHECKED:
            return ApprovalCheck(False, "Document has not been checked for duplicates")
        if document.duplicate_status is DuplicateStatus.DUPLICATE:
            return ApprovalCheck(False, "Duplicate decision required before approval")
        if document.duplicate_status is DuplicateStatus.CONFIRMED:
            return ApprovalCheck(False, "Confirmed duplicates cannot be approved")
        return ApprovalCheck(True)

    def decisions(self, tenant_id: str, processing_document_id: str) -> list[DuplicateDecision]:
        self._tracker.get_for_tenant(tenant_id, processing_document_id)
        return self._tracker.decisions(processing_document_id)


def build_duplicate_review(
    settings: Settings, event_sink: BaseEventSink | None = None
) -> DuplicateReview:
    """Build a DuplicateReview from settings. The connection pool must be open."""
    return DuplicateReview(
        build_tracker(settings, event_sink or LoggingEventSink()),
        DocumentRepository(),
    )
