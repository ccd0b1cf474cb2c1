from typing import Any

import psycopg
import pytest
from records import make_processing_document

from docflow.database.connection import get_connection
from docflow.database.models import Document, ProcessingDocument, ProcessingPriority
from docflow.database.repositories.job_repository import JobRepository
from docflow.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)


def _job_ids(processing_document_id: str) -> list[int]:
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id FROM pipeline_jobs WHERE processing_document_id = %s ORDER BY id",
                (processing_document_id,),
            )
            return [row[0] for row in cur.fetchall()]


@pytest.mark.integration
class TestJobRepositoryEnqueue:
    def test_enqueue_is_a_noop_while_a_job_is_active(
        self, seed_processing_document: ProcessingDocument
    ) -> None:
        repo = JobRepository(max_attempts=3)

        repo.enqueue(seed_processing_document.id, ProcessingPriority.NORMAL)
        repo.enqueue(seed_processing_document.id, ProcessingPriority.HIGH)

        assert len(_job_ids(seed_processing_document.id)) == 1

    def test_enqueue_after_completion_adds_a_new_job(
        self, seed_processing_document: ProcessingDocument
    ) -> None:
        repo = JobRepository(max_attempts=3)
        repo.enqueue(seed_processing_document.id, ProcessingPriority.NORMAL)
        [first] = _job_ids(seed_processing_document.id)
        repo.mark_done(first)

        repo.enqueue(seed_processing_document.id, ProcessingPriority.NORMAL)

        assert len(_job_ids(seed_processing_document.id)) == 2


@pytest.mark.integration
class TestJobRepositoryClaimNextJob:
    def test_claim_next_job_returns_and_locks_job(
        self, seed_processing_document: ProcessingDocument, db_conn: psycopg.Connection[Any]
    ) -> None:
        repo = JobRepository(max_attempts=3)
        repo.enqueue(seed_processing_document.id, ProcessingPriority.CRITICAL)

        job = repo.claim_next_job(db_conn)

        assert job is not None
        assert job.processing_document_id == seed_processing_document.id
        assert job.status == "processing"
        stored = repo.find_by_id(job.id)
        assert stored is not None
        assert stored.status == "processing"
        assert stored.locked_at is not None

    def test_higher_priority_is_claimed_first(
        self, seed_document: Document, db_conn: psycopg.Connection[Any]
    ) -> None:
        documents = ProcessingDocumentRepository()
        low = documents.create(make_processing_document(seed_document), trigger="upload")
        critical = documents.create(make_processing_document(seed_document), trigger="upload")
        repo = JobRepository(max_attempts=3)
        repo.enqueue(low.id, ProcessingPriority.LOW)
        repo.enqueue(critical.id, ProcessingPriority.CRITICAL)

        first = repo.claim_next_job(db_conn)

        assert first is not None
        assert first.processing_document_id == critical.id
        assert first.priority is ProcessingPriority.CRITICAL

    def test_claim_next_job_skips_job_with_attempts_at_max(
        self, seed_processing_document: ProcessingDocument, db_conn: psycopg.Connection[Any]
    ) -> None:
        with db_conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO pipeline_jobs (processing_document_id, status, attempts)
                VALUES (%s, 'pending', 3)
                """,
                (seed_processing_document.id,),
            )
        db_conn.commit()

        job = JobRepository(max_attempts=3).claim_next_job(db_conn)

        assert job is None or job.processing_document_id != seed_processing_document.id


@pytest.mark.integration
class TestJobRepositoryTransitions:
    def test_mark_failed_updates_status_and_error_message(
        self, seed_processing_document: ProcessingDocument
    ) -> None:
        repo = JobRepository(max_attempts=3)
        repo.enqueue(seed_processing_document.id, ProcessingPriority.NORMAL)
        [job_id] = _job_ids(seed_processing_document.id)

        repo.mark_failed(job_id, "error text")

        job = repo.find_by_id(job_id)
        assert job is not None
        assert (job.status, job.error_message, job.attempts) == ("failed", "error text", 1)

    def test_retry_later_delays_availability(
        self, seed_processing_document: ProcessingDocument, db_conn: psycopg.Connection[Any]
    ) -> None:
        repo = JobRepository(max_attempts=3)
        repo.enqueue(seed_processing_document.id, ProcessingPriority.NORMAL)
        [job_id] = _job_ids(seed_processing_document.id)

        repo.retry_later(job_id, "timeout", delay_seconds=3600)

        job = repo.find_by_id(job_id)
        assert job is not None
        assert (job.status, job.attempts, job.locked_at) == ("pending", 1, None)
        with db_conn.cursor() as cur:
            cur.execute("SELECT available_at > NOW() FROM pipeline_jobs WHERE id = %s", (job_id,))
            row = cur.fetchone()
        db_conn.commit()
        assert row is not None and row[0] is True
