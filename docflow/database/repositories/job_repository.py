from typing import Any

import psycopg
from psycopg.rows import dict_row

from docflow.database.connection import get_connection
from docflow.database.models import JobRecord, ProcessingPriority


class JobRepository:
    """Database operations for the pipeline_jobs table."""

    def __init__(self, max_attempts: int) -> None:
        self._max_attempts = max_attempts

    def enqueue(self, processing_document_id: str, priority: ProcessingPriority) -> None:
        """Queue work for a document. A no-op while it already has an active job."""
        with get_connection() as conn:
            conn.execute(
                """
                INSERT INTO pipeline_jobs (processing_document_id, priority)
                VALUES (%s, %s)
                ON CONFLICT (processing_document_id)
                    WHERE status IN ('pending', 'processing')
                DO NOTHING
                """,
                (processing_document_id, priority.value),
            )
            conn.commit()

    def claim_next_job(self, conn: psycopg.Connection[Any]) -> JobRecord | None:
        """Claim the most urgent available job using SELECT FOR UPDATE SKIP LOCKED."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT id, processing_document_id, status, attempts, priority
                FROM pipeline_jobs
                WHERE status = 'pending'
                  AND attempts < %s
                  AND available_at <= NOW()
                ORDER BY CASE priority
                             WHEN 'critical' THEN 0
                             WHEN 'high' THEN 1
                             WHEN 'normal' THEN 2
                             ELSE 3
                         END,
                         available_at,
                         id
                LIMIT 1
                FOR UPDATE SKIP LOCKED
                """,
                (self._max_attempts,),
            )
            row = cur.fetchone()

        if row is None:
            conn.commit()
            return None

        conn.execute(
            """
            UPDATE pipeline_jobs
            SET status = 'processing', locked_at = NOW(), updated_at = NOW()
            WHERE id = %s
            """,
            (row["id"],),
        )
        conn.commit()

        return JobRecord(
            id=row["id"],
            processing_document_id=row["processing_document_id"],
            status="processing",
            attempts=row["attempts"],
            priority=ProcessingPriority(row["priority"]),
        )

    def mark_done(self, job_id: int) -> None:
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE pipeline_jobs
                SET status = 'done', locked_at = NULL, updated_at = NOW()
                WHERE id = %s
                """,
                (job_id,),
            )
            conn.commit()

    def mark_failed(self, job_id: int, error: str) -> None:
        """Mark a job as permanently failed."""
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE pipeline_jobs
                SET status = 'failed', attempts = attempts + 1, error_message = %s,
                    locked_at = NULL, updated_at = NOW()
                WHERE id = %s
                """,
                (error, job_id),
            )
            conn.commit()

    def retry_later(self, job_id: int, error: str, delay_seconds: float) -> None:
        """Increment attempt count and return the job to pending after a delay."""
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE pipeline_jobs
                SET attempts = attempts + 1, status = 'pending', error_message = %s,
                    available_at = NOW() + make_interval(secs => %s),
                    locked_at = NULL, updated_at = NOW()
                WHERE id = %s
                """,
                (error, delay_seconds, job_id),
            )
            conn.commit()

    def find_by_id(self, job_id: int) -> JobRecord | None:
        """Find a job by ID. Useful for tests."""
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT id, processing_document_id, status, attempts, priority,
                           error_message, available_at, locked_at, created_at, updated_at
                    FROM pipeline_jobs
                    WHERE id = %s
                    """,
                    (job_id,),
                )
                row = cur.fetchone()

        if row is None:
            return None

        return JobRecord(
            id=row["id"],
            processing_document_id=row["processing_document_id"],
            status=row["status"],
            attempts=row["attempts"],
            priority=ProcessingPriority(row["priority"]),
            error_message=row["error_message"],
            available_at=row["available_at"],
            locked_at=row["locked_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
