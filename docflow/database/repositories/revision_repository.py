from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from docflow.database.connection import get_connection
from docflow.database.models import (
    Counterparty,
    DocumentCategory,
    DocumentRevision,
    RevisionStatus,
)

_COLUMNS = """
    id, processing_document_id, revision_number, status, category,
    document_number, document_date, currency, subtotal, tax_amount,
    total_amount, counterparties, extraction_model, input_tokens,
    output_tokens, created_at
"""


class RevisionRepository:
    """Database operations for the document_revisions table."""

    def create(self, revision: DocumentRevision) -> DocumentRevision:
        """Insert the next revision and supersede the earlier drafts."""
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                stored = insert_revision(cur, revision)
            conn.commit()
        return stored

    def list_for_document(self, processing_document_id: str) -> list[DocumentRevision]:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM document_revisions
                    WHERE processing_document_id = %s
                    ORDER BY revision_number
                    """,
                    (processing_document_id,),
                )
                rows = cur.fetchall()
        return [_row_to_revision(row) for row in rows]


def _optional_float(value: Any) -> float | None:
    return float(value) if value is not None else None


def _row_to_revision(row: dict[str, Any]) -> DocumentRevision:
    return DocumentRevision(
        id=row["id"],
        processing_document_id=row["processing_document_id"],
        revision_number=row["revision_number"],
        status=RevisionStatus(row["status"]),
        category=DocumentCategory(row["category"]),
        document_number=row["document_number"],
        document_date=row["document_date"],
        currency=row["currency"],
        subtotal=_optional_float(row["subtotal"]),
        tax_amount=_optional_float(row["tax_amount"]),
        total_amount=_optional_float(row["total_amount"]),
        counterparties=[
            Counterparty(name=item["name"], role=item.get("role", ""), tax_id=item.get("tax_id"))
            for item in row["counterparties"]
        ],
        extraction_model=row["extraction_model"],
        input_tokens=row["input_tokens"],
        output_tokens=row["output_tokens"],
        created_at=row["created_at"],
    )


def insert_revision(
    cur: psycopg.Cursor[dict[str, Any]], revision: DocumentRevision
) -> DocumentRevision:
    """Insert the next revision and supersede the earlier ones. The caller commits."""
    cur.execute(
        """
        UPDATE document_revisions
        SET status = 'superseded'
        WHERE processing_document_id = %s AND status <> 'superseded'
        """,
        (revision.processing_document_id,),
    )
    cur.execute(
        f"""
        INSERT INTO document_revisions
        (id, processing_document_id, revision_number, status, category,
         document_number, document_date, currency, subtotal, tax_amount,
         total_amount, counterparties, extraction_model, input_tokens,
         output_tokens)
        VALUES (
            %s, %s,
            (SELECT COALESCE(MAX(revision_number), 0) + 1
             FROM document_revisions WHERE processing_document_id = %s),
            %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s
        )
        RETURNING {_COLUMNS}
        """,
        (
            revision.id,
            revision.processing_document_id,
            revision.processing_document_id,
            revision.status.value,
            revision.category.value,
            revision.document_number,
            revision.document_date,
            revision.currency,
            revision.subtotal,
            revision.tax_amount,
            revision.total_amount,
            Jsonb(
                [
                    {"name": c.name, "role": c.role, "tax_id": c.tax_id}
                    for c in revision.counterparties
                ]
            ),
            revision.extraction_model,
            revision.input_tokens,
            revision.output_tokens,
        ),
    )
    row = cur.fetchone()
    if row is None:
        raise RuntimeError(f"Revision {revision.id} was not returned after insert")
    return _row_to_revision(row)
