from dataclasses import replace
from enum import Enum
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from docflow.database.connection import get_connection
from docflow.database.models import (
    DocumentRevision,
    DuplicateAction,
    DuplicateDecision,
    DuplicateStatus,
    PageRange,
    PipelineStatus,
    ProcessingDocument,
    ProcessingDocumentFilter,
    ProcessingPriority,
    StateEvent,
    UploadSource,
)
from docflow.database.repositories.revision_repository import insert_revision
from docflow.exceptions import ProcessingDocumentNotFoundError, StaleLockVersionError

_COLUMNS = """
    id, document_id, tenant_id, company_id, is_container, parent_id,
    page_from, page_to, page_count, pipeline_status, duplicate_status,
    duplicate_of_document_id, current_revision_id, lock_version, priority,
    source, retry_count, cancel_requested, cancel_reason, last_error,
    error_stage, failed_at, split_ranges, created_at, updated_at
"""

_MUTABLE_COLUMNS = frozenset(
    {
        "page_count",
        "pipeline_status",
        "duplicate_status",
        "duplicate_of_document_id",
        "current_revision_id",
        "retry_count",
        "cancel_requested",
        "cancel_reason",
        "last_error",
        "error_stage",
        "failed_at",
        "split_ranges",
    }
)


class ProcessingDocumentRepository:
    """Database operations for processing_documents and their state events.

    Every mutation goes through compare_and_swap, which bumps lock_version by
    one and writes the state event in the same transaction.
    """

    def create(self, document: ProcessingDocument, trigger: str) -> ProcessingDocument:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                created = self._insert(cur, document)
                self._insert_event(
                    cur,
                    StateEvent(
                        processing_document_id=created.id,
                        from_status=None,
                        to_status=created.pipeline_status,
                        trigger=trigger,
                        lock_version=created.lock_version,
                    ),
                )
            conn.commit()
        return created

    def create_children(
        self, children: list[ProcessingDocument], trigger: str
    ) -> list[ProcessingDocument]:
        """Insert all children of a container in one transaction."""
        created: list[ProcessingDocument] = []
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                for child in children:
                    row = self._insert(cur, child)
                    self._insert_event(
                        cur,
                        StateEvent(
                            processing_document_id=row.id,
                            from_status=None,
                            to_status=row.pipeline_status,
                            trigger=trigger,
                            lock_version=row.lock_version,
                        ),
                    )
                    created.append(row)
            conn.commit()
        return created

    def find_by_id(self, processing_document_id: str) -> ProcessingDocument | None:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM processing_documents WHERE id = %s",
                    (processing_document_id,),
                )
                row = cur.fetchone()
        return _row_to_processing_document(row) if row else None

    def find_children(self, parent_id: str) -> list[ProcessingDocument]:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM processing_documents
                    WHERE parent_id = %s
                    ORDER BY page_from, id
                    """,
                    (parent_id,),
                )
                rows = cur.fetchall()
        return [_row_to_processing_document(row) for row in rows]

    def compare_and_swap(
        self,
        processing_document_id: str,
        expected_lock_version: int,
        changes: dict[str, Any],
        event: StateEvent | None = None,
        revision: DocumentRevision | None = None,
        decision: DuplicateDecision | None = None,
    ) -> ProcessingDocument:
        """Apply changes only if lock_version still matches.

        A revision or duplicate decision passed along is inserted in the same
        transaction, so it is only stored when the swap succeeds.

        Raises:
            StaleLockVersionError: if another writer got there first.
            ProcessingDocumentNotFoundError: if the row does not exist.
        """
        unknown = set(changes) - _MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns are not mutable: {sorted(unknown)}")

        assignments = [
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in changes
        ]
        assignments.append(sql.SQL("lock_version = lock_version + 1"))
        assignments.append(sql.SQL("updated_at = NOW()"))
        query = sql.SQL(
            "UPDATE processing_documents SET {} "
            "WHERE id = %s AND lock_version = %s RETURNING {}"
        ).format(sql.SQL(", ").join(assignments), sql.SQL(_COLUMNS))
        params = [_to_db(value) for value in changes.values()]
        params.extend([processing_document_id, expected_lock_version])

        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
                if row is None:
                    conn.rollback()
                    self._raise_cas_failure(cur, processing_document_id, expected_lock_version)
                updated = _row_to_processing_document(row)
                if event is not None:
                    self._insert_event(cur, replace(event, lock_version=updated.lock_version))
                if revision is not None:
                    insert_revision(cur, revision)
                if decision is not None:
                    self._insert_decision(cur, decision)
            conn.commit()
        return updated

    def list_paged(
        self, filters: ProcessingDocumentFilter, page: int, limit: int
    ) -> tuple[list[ProcessingDocument], int]:
        """Return one page of matching documents and the total match count."""
        where = _build_where(filters)
        params = _where_params(filters)
        count_query = sql.SQL("SELECT COUNT(*) AS total FROM processing_documents WHERE {}").format(
            where
        )
        page_query = sql.SQL(
            "SELECT {} FROM processing_documents WHERE {} "
            "ORDER BY created_at DESC, id LIMIT %s OFFSET %s"
        ).format(sql.SQL(_COLUMNS), where)

        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(count_query, params)
                count_row = cur.fetchone()
                cur.execute(page_query, [*params, limit, (page - 1) * limit])
                rows = cur.fetchall()
        total = int(count_row["total"]) if count_row else 0
        return [_row_to_processing_document(row) for row in rows], total

    def list_events(self, processing_document_id: str) -> list[StateEvent]:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT id, processing_document_id, from_status, to_status,
                           trigger, lock_version, occurred_at
                    FROM processing_state_events
                    WHERE processing_document_id = %s
                    ORDER BY id
                    """,
                    (processing_document_id,),
                )
                rows = cur.fetchall()
        return [
            StateEvent(
                id=row["id"],
                processing_document_id=row["processing_document_id"],
                from_status=PipelineStatus(row["from_status"]) if row["from_status"] else None,
                to_status=PipelineStatus(row["to_status"]),
                trigger=row["trigger"],
                lock_version=row["lock_version"],
                occurred_at=row["occurred_at"],
            )
            for row in rows
        ]

    def clear_duplicate_references(self, document_id: str) -> int:
        """Drop pending duplicate suspicions that point at a removed document."""
        with get_connection() as conn:
            cur = conn.execute(
                """
                UPDATE processing_documents
                SET duplicate_status = 'none', duplicate_of_document_id = NULL,
                    lock_version = lock_version + 1, updated_at = NOW()
                WHERE duplicate_of_document_id = %s AND duplicate_status = 'duplicate'
                """,
                (document_id,),
            )
            cleared = cur.rowcount
            conn.commit()
        return cleared

    def list_decisions(self, processing_document_id: str) -> list[DuplicateDecision]:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT id, processing_document_id, suspected_of_document_id, action,
                           decided_by, reason, decided_at
                    FROM duplicate_decisions
                    WHERE processing_document_id = %s
                    ORDER BY decided_at, id
                    """,
                    (processing_document_id,),
                )
                rows = cur.fetchall()
        return [
            DuplicateDecision(
                id=row["id"],
                processing_document_id=row["processing_document_id"],
                suspected_of_document_id=row["suspected_of_document_id"],
                action=DuplicateAction(row["action"]),
                decided_by=row["decided_by"],
                reason=row["reason"],
                decided_at=row["decided_at"],
            )
            for row in rows
        ]

    @staticmethod
    def _insert(
        cur: psycopg.Cursor[dict[str, Any]], document: ProcessingDocument
    ) -> ProcessingDocument:
        cur.execute(
            f"""
            INSERT INTO processing_documents
            (id, document_id, tenant_id, company_id, is_container, parent_id,
             page_from, page_to, page_count, pipeline_status, duplicate_status,
             duplicate_of_document_id, priority, source, split_ranges)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {_COLUMNS}
            """,
            (
                document.id,
                document.document_id,
                document.tenant_id,
                document.company_id,
                document.is_container,
                document.parent_id,
                document.page_from,
                document.page_to,
                document.page_count,
                document.pipeline_status.value,
                document.duplicate_status.value,
                document.duplicate_of_document_id,
                document.priority.value,
                document.source.value,
                _to_db(document.split_ranges),
            ),
        )
        row = cur.fetchone()
        if row is None:
            raise RuntimeError(f"Processing document {document.id} was not returned after insert")
        return _row_to_processing_document(row)

    @staticmethod
    def _insert_event(cur: psycopg.Cursor[dict[str, Any]], event: StateEvent) -> None:
        cur.execute(
            """
            INSERT INTO processing_state_events
            (processing_document_id, from_status, to_status, trigger, lock_version)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (
                event.processing_document_id,
                event.from_status.value if event.from_status else None,
                event.to_status.value,
                event.trigger,
                event.lock_version,
            ),
        )

    @staticmethod
    def _insert_decision(
        cur: psycopg.Cursor[dict[str, Any]], decision: DuplicateDecision
    ) -> None:
        cur.execute(
            """
            INSERT INTO duplicate_decisions
            (id, processing_document_id, suspected_of_document_id, action, decided_by, reason)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                decision.id,
                decision.processing_document_id,
                decision.suspected_of_document_id,
                decision.action.value,
                decision.decided_by,
                decision.reason,
            ),
        )

    @staticmethod
    def _raise_cas_failure(
        cur: psycopg.Cursor[dict[str, Any]],
        processing_document_id: str,
        expected_lock_version: int,
    ) -> None:
        cur.execute(
            "SELECT lock_version FROM processing_documents WHERE id = %s",
            (processing_document_id,),
        )
        current = cur.fetchone()
        if current is None:
            raise ProcessingDocumentNotFoundError(
                f"Processing document {processing_document_id} not found"
            )
        raise StaleLockVersionError(
            f"Processing document {processing_document_id} is at lock version "
            f"{current['lock_version']}, expected {expected_lock_version}"
        )


def _to_db(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return Jsonb(
            [{"page_from": item.page_from, "page_to": item.page_to} for item in value]
        )
    return value


def _build_where(filters: ProcessingDocumentFilter) -> sql.Composed:
    conditions = [sql.SQL("tenant_id = %s")]
    if filters.pipeline_status is not None:
        conditions.append(sql.SQL("pipeline_status = %s"))
    if filters.duplicate_status is not None:
        conditions.append(sql.SQL("duplicate_status = %s"))
    if filters.is_container is not None:
        conditions.append(sql.SQL("is_container = %s"))
    if filters.company_ids:
        conditions.append(sql.SQL("company_id = ANY(%s)"))
    if filters.parent_id is not None:
        conditions.append(sql.SQL("parent_id = %s"))
    return sql.SQL(" AND ").join(conditions)


def _where_params(filters: ProcessingDocumentFilter) -> list[Any]:
    params: list[Any] = [filters.tenant_id]
    if filters.pipeline_status is not None:
        params.append(filters.pipeline_status.value)
    if filters.duplicate_status is not None:
        params.append(filters.duplicate_status.value)
    if filters.is_container is not None:
        params.append(filters.is_container)
    if filters.company_ids:
        params.append(list(filters.company_ids))
    if filters.parent_id is not None:
        params.append(filters.parent_id)
    return params


def _row_to_processing_document(row: dict[str, Any]) -> ProcessingDocument:
    raw_ranges = row["split_ranges"]
    return ProcessingDocument(
        id=row["id"],
        document_id=row["document_id"],
        tenant_id=row["tenant_id"],
        company_id=row["company_id"],
        is_container=row["is_container"],
        parent_id=row["parent_id"],
        page_from=row["page_from"],
        page_to=row["page_to"],
        page_count=row["page_count"],
        pipeline_status=PipelineStatus(row["pipeline_status"]),
        duplicate_status=DuplicateStatus(row["duplicate_status"]),
        duplicate_of_document_id=row["duplicate_of_document_id"],
        current_revision_id=row["current_revision_id"],
        lock_version=row["lock_version"],
        priority=ProcessingPriority(row["priority"]),
        source=UploadSource(row["source"]),
        retry_count=row["retry_count"],
        cancel_requested=row["cancel_requested"],
        cancel_reason=row["cancel_reason"],
        last_error=row["last_error"],
        error_stage=row["error_stage"],
        failed_at=row["failed_at"],
        split_ranges=(
            [PageRange(item["page_from"], item["page_to"]) for item in raw_ranges]
            if raw_ranges is not None
            else None
        ),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
