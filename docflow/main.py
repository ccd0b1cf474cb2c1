from docflow.config.settings import Settings
from docflow.database.connection import close_pool, init_pool
from docflow.database.repositories.idempotency_repository import IdempotencyRepository
from docflow.database.repositories.job_repository import JobRepository
from docflow.gateway.idempotency import IdempotencyStore
from docflow.logging.logger import Log
from docflow.pipeline.processor import build_processor
from docflow.worker.job_runner import JobRunner
from docflow.worker.worker import Worker


def main() -> None:
    """Entry point: initialize pool -> build dependencies -> start worker loop."""
    settings = Settings()
    Log.configure(settings.log_level)
    init_pool(settings)

    try:
        processor = build_processor(settings)
        job_repo = JobRepository(settings.max_job_attempts)
        job_runner = JobRunner(processor, job_repo, settings)
        idempotency = IdempotencyStore(
            IdempotencyRepository(), ttl_hours=settings.idempotency_ttl_hours
        )
        worker = Worker(job_repo, job_runner, settings, idempotency=idempotency)
        worker.run()
    finally:
        close_pool()


if __name__ == "__main__":
    main()
