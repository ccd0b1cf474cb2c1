"""Error taxonomy shared by every docflow component.

Each error carries an HTTP-style ``status_code`` so an outer API layer can
map failures without inspecting messages. The worker uses the transient and
permanent branches to decide between a retry and an immediate failure.
"""


class DocflowError(Exception):
    """Base exception for all docflow errors."""

    status_code: int = 500


class InvalidRequestError(DocflowError):
    """Raised when a request fails validation. No state is written."""

    status_code = 422


class PermissionDeniedError(DocflowError):
    """Raised when a resource belongs to another tenant."""

    status_code = 403

    def __init__(self, message: str = "You do not have access to this resource") -> None:
        super().__init__(message)


class NotFoundError(DocflowError):
    status_code = 404


class DocumentNotFoundError(NotFoundError):
    """Raised when a document cannot be found."""


class ProcessingDocumentNotFoundError(NotFoundError):
    """Raised when a processing document cannot be found."""


class LinkNotFoundError(NotFoundError):
    """Raised when a document link cannot be found."""


class ConflictError(DocflowError):
    status_code = 409


class StaleLockVersionError(ConflictError):
    """Raised when a write presents a lock version that is no longer current."""


class InvalidTransitionError(ConflictError):
    """Raised when a pipeline state change is not allowed."""


class DuplicateLinkError(ConflictError):
    """Raised when a link of the same type already joins two documents."""


class IdempotencyInProgressError(ConflictError):
    """Raised when another request holding the same key has not finished."""


class IdempotencyKeyMismatchError(ConflictError):
    """Raised when an idempotency key is reused with a different request body."""

    status_code = 422


class PipelineError(DocflowError):
    """Base exception for failures while a document moves through the pipeline."""


class TransientPipelineError(PipelineError):
    """A failure that may succeed when retried (network, storage, timeouts)."""

    status_code = 503


class PermanentPipelineError(PipelineError):
    """A failure that will not go away on retry (corrupt or unsupported input)."""

    status_code = 422


class UnsupportedDocumentError(PermanentPipelineError):
    """Raised when a stored document cannot be processed."""


class InvalidSplitPlanError(PermanentPipelineError):
    """Raised when page ranges do not partition the container."""


class PipelineCancelledError(PipelineError):
    """Raised at a checkpoint after the document was cancelled."""

    status_code = 409
