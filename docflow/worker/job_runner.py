from docflow.config.settings import Settings
from docflow.database.models import JobRecord
from docflow.database.repositories.job_repository import JobRepository
from docflow.exceptions import (
    InvalidRequestError,
    NotFoundError,
    PermanentPipelineError,
    PipelineCancelledError,
)
from docflow.logging.logger import Log
from docflow.pipeline.processor import Processor
from docflow.pipeline.state_machine import is_terminal

PERMANENT_ERRORS = (PermanentPipelineError, InvalidRequestError, NotFoundError)


class JobRunner:
    """Run one job, catch exceptions, and apply retry logic."""

    def __init__(
        self,
        processor: Processor,
        job_repo: JobRepository,
        settings: Settings,
    ) -> None:
        self._processor = processor
        self._job_repo = job_repo
        self._settings = settings

    def run(self, job: JobRecord) -> None:
        """Execute a single job with error handling."""
        Log.info(
            f"Running job {job.id} (attempt {job.attempts + 1})",
            document=job.processing_document_id,
        )
        try:
            self._processor.process(job.processing_document_id, job.id)
            self._job_repo.mark_done(job.id)
            Log.info(f"Job {job.id} completed successfully")
        except PipelineCancelledError as exc:
            # The document was already failed with the cancellation reason.
            self._job_repo.mark_failed(job.id, str(exc))
            Log.warning(f"Job {job.id} stopped: {exc}")
        except Exception as exc:
            self._handle_failure(job, exc)

    def retry_delay(self, attempts: int) -> float:
        """Backoff before the next attempt, given how many attempts already failed."""
        delay = self._settings.retry_base_delay_seconds * (
            self._settings.retry_backoff_multiplier ** max(attempts - 1, 0)
        )
        return min(delay, self._settings.retry_max_delay_seconds)

    def _handle_failure(self, job: JobRecord, exc: Exception) -> None:
        """Fail permanent errors right away; retry the rest until attempts run out."""
        Log.error(f"Job {job.id} failed: {type(exc).__name__}: {exc}")
        attempts = job.attempts + 1
        message = str(exc) or type(exc).__name__

        if isinstance(exc, PERMANENT_ERRORS):
            self._job_repo.mark_failed(job.id, message)
            self._fail_document(job, message)
            return

        if self._document_is_settled(job):
            self._job_repo.mark_failed(job.id, message)
            Log.warning(f"Job {job.id} dropped, document is already terminal")
            return

        if attempts >= self._settings.max_job_attempts:
            self._job_repo.mark_failed(job.id, message)
            self._fail_document(job, message)
            Log.error(f"Job {job.id} permanently failed after {attempts} attempts")
            return

        delay = self.retry_delay(attempts)
        self._job_repo.retry_later(job.id, message, delay)
        Log.warning(f"Job {job.id} will be retried in {delay:.1f}s (attempt {attempts})")

    def _fail_document(self, job: JobRecord, message: str) -> None:
        try:
            self._processor.tracker.fail(job.processing_document_id, message)
        except NotFoundError:
            Log.warning("Processing document no longer exists", document=job.processing_document_id)

    def _document_is_settled(self, job: JobRecord) -> bool:
        try:
            document = self._processor.tracker.get(job.processing_document_id)
        except NotFoundError:
            return True
        return is_terminal(document.pipeline_status)
