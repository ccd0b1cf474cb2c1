from typing import Any

from psycopg.rows import dict_row

from docflow.database.connection import get_connection
from docflow.database.models import Document

_COLUMNS = """
    id, tenant_id, company_id, original_filename, mime_type, size_bytes,
    storage_key, content_hash, created_at, deleted_at
"""


class DocumentRepository:
    """Database operations for the documents table (the document registry)."""

    def create(self, document: Document) -> Document:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO documents
                    (id, tenant_id, company_id, original_filename, mime_type,
                     size_bytes, storage_key, content_hash)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_COLUMNS}
                    """,
                    (
                        document.id,
                        document.tenant_id,
                        document.company_id,
                        document.original_filename,
                        document.mime_type,
                        document.size_bytes,
                        document.storage_key,
                        document.content_hash,
                    ),
                )
                row = cur.fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError(f"Document {document.id} was not returned after insert")
        return _row_to_document(row)

    def find_by_id(self, document_id: str) -> Document | None:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM documents WHERE id = %s",
                    (document_id,),
                )
                row = cur.fetchone()
        return _row_to_document(row) if row else None

    def find_first_by_hash(
        self,
        tenant_id: str,
        content_hash: str,
        company_id: str | None = None,
        exclude_document_id: str | None = None,
    ) -> Document | None:
        """Return the earliest live document in scope with the given content hash."""
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM documents
                    WHERE tenant_id = %s
                      AND content_hash = %s
                      AND deleted_at IS NULL
                      AND (%s::text IS NULL OR company_id = %s)
                      AND (%s::text IS NULL OR id <> %s)
                    ORDER BY created_at, id
                    LIMIT 1
                    """,
                    (
                        tenant_id,
                        content_hash,
                        company_id,
                        company_id,
                        exclude_document_id,
                        exclude_document_id,
                    ),
                )
                row = cur.fetchone()
        return _row_to_document(row) if row else None

    def soft_delete(self, document_id: str) -> None:
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE documents
                SET deleted_at = NOW()
                WHERE id = %s AND deleted_at IS NULL
                """,
                (document_id,),
            )
            conn.commit()


def _row_to_document(row: dict[str, Any]) -> Document:
    return Document(
        id=row["id"],
        tenant_id=row["tenant_id"],
        company_id=row["company_id"],
        original_filename=row["original_filename"],
        mime_type=row["mime_type"],
        size_bytes=row["size_bytes"],
        storage_key=row["storage_key"],
        content_hash=row["content_hash"],
        created_at=row["created_at"],
        deleted_at=row["deleted_at"],
    )
