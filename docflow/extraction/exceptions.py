from docflow.exceptions import PermanentPipelineError, TransientPipelineError


class ExtractionError(PermanentPipelineError):
    """Raised when extraction fails in a way a retry will not fix."""


class ExtractionValidationError(ExtractionError):
    """Raised when the extracted payload fails domain validation."""


class ExtractionNetworkError(TransientPipelineError):
    """Raised when the AI provider call fails due to network/infrastructure issues."""
