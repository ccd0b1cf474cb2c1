"""Allowed pipeline status transitions."""

from docflow.database.models import DuplicateStatus, PipelineStatus, ProcessingDocument
from docflow.exceptions import InvalidTransitionError

ALLOWED_TRANSITIONS: dict[PipelineStatus, frozenset[PipelineStatus]] = {
    PipelineStatus.PENDING: frozenset({PipelineStatus.QUEUED, PipelineStatus.FAILED}),
    PipelineStatus.QUEUED: frozenset(
        {PipelineStatus.SPLITTING, PipelineStatus.EXTRACTING, PipelineStatus.FAILED}
    ),
    PipelineStatus.SPLITTING: frozenset({PipelineStatus.COMPLETED, PipelineStatus.FAILED}),
    PipelineStatus.EXTRACTING: frozenset({PipelineStatus.COMPLETED, PipelineStatus.FAILED}),
    PipelineStatus.FAILED: frozenset({PipelineStatus.QUEUED}),
    PipelineStatus.COMPLETED: frozenset(),
}

TERMINAL_STATUSES = frozenset({PipelineStatus.COMPLETED, PipelineStatus.FAILED})
WORKING_STATUSES = frozenset({PipelineStatus.SPLITTING, PipelineStatus.EXTRACTING})


def is_terminal(status: PipelineStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(document: ProcessingDocument, target: PipelineStatus) -> bool:
    try:
        validate_transition(document, target)
    except InvalidTransitionError:
        return False
    return True


def validate_transition(document: ProcessingDocument, target: PipelineStatus) -> None:
    """Raise InvalidTransitionError unless document may move to target."""
    current = document.pipeline_status
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move document {document.id} from {current.value} to {target.value}"
        )
    if current is PipelineStatus.QUEUED and target in WORKING_STATUSES:
        if document.duplicate_status is DuplicateStatus.UNCHECKED:
            raise InvalidTransitionError(
                f"Document {document.id} must be checked for duplicates before processing"
            )
        if target is PipelineStatus.SPLITTING and not document.is_container:
            raise InvalidTransitionError(f"Document {document.id} is not a container")
        if target is PipelineStatus.EXTRACTING and document.is_container:
            raise InvalidTransitionError(
                f"Container {document.id} must be split instead of extracted"
            )
