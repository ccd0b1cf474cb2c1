from docflow.exceptions import PermanentPipelineError


class RenderError(PermanentPipelineError):
    """Raised when a document or page cannot be rendered."""
