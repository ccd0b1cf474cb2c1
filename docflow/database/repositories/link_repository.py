from typing import Any

import psycopg
from psycopg.rows import dict_row

from docflow.database.connection import get_connection
from docflow.database.models import DocumentLink, LinkType
from docflow.exceptions import DuplicateLinkError, LinkNotFoundError

_COLUMNS = "id, tenant_id, source_id, target_id, link_type, note, created_at, updated_at"


class LinkRepository:
    """Database operations for the document_links table."""

    def create(self, link: DocumentLink) -> DocumentLink:
        try:
            with get_connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO document_links
                        (id, tenant_id, source_id, target_id, link_type, note)
                        VALUES (%s, %s, %s, %s, %s, %s)
                        RETURNING {_COLUMNS}
                        """,
                        (
                            link.id,
                            link.tenant_id,
                            link.source_id,
                            link.target_id,
                            link.link_type.value,
                            link.note,
                        ),
                    )
                    row = cur.fetchone()
                conn.commit()
        except psycopg.errors.UniqueViolation as exc:
            raise DuplicateLinkError(
                f"A {link.link_type.value} link already joins these documents"
            ) from exc
        if row is None:
            raise RuntimeError(f"Link {link.id} was not returned after insert")
        return _row_to_link(row)

    def find_by_id(self, link_id: str) -> DocumentLink | None:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM document_links WHERE id = %s",
                    (link_id,),
                )
                row = cur.fetchone()
        return _row_to_link(row) if row else None

    def find_between(
        self, first_id: str, second_id: str, link_type: LinkType
    ) -> DocumentLink | None:
        """Find a link of the given type between two documents in either direction."""
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM document_links
                    WHERE link_type = %s
                      AND ((source_id = %s AND target_id = %s)
                        OR (source_id = %s AND target_id = %s))
                    LIMIT 1
                    """,
                    (link_type.value, first_id, second_id, second_id, first_id),
                )
                row = cur.fetchone()
        return _row_to_link(row) if row else None

    def update(self, link_id: str, link_type: LinkType, note: str | None) -> DocumentLink:
        try:
            with get_connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(
                        f"""
                        UPDATE document_links
                        SET link_type = %s, note = %s, updated_at = NOW()
                        WHERE id = %s
                        RETURNING {_COLUMNS}
                        """,
                        (link_type.value, note, link_id),
                    )
                    row = cur.fetchone()
                conn.commit()
        except psycopg.errors.UniqueViolation as exc:
            raise DuplicateLinkError(
                f"A {link_type.value} link already joins these documents"
            ) from exc
        if row is None:
            raise LinkNotFoundError(f"Link {link_id} not found")
        return _row_to_link(row)

    def delete(self, link_id: str) -> None:
        with get_connection() as conn:
            conn.execute("DELETE FROM document_links WHERE id = %s", (link_id,))
            conn.commit()

    def list_for_document(self, processing_document_id: str) -> list[DocumentLink]:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM document_links
                    WHERE source_id = %s OR target_id = %s
                    ORDER BY created_at, id
                    """,
                    (processing_document_id, processing_document_id),
                )
                rows = cur.fetchall()
        return [_row_to_link(row) for row in rows]


def _row_to_link(row: dict[str, Any]) -> DocumentLink:
    return DocumentLink(
        id=row["id"],
        tenant_id=row["tenant_id"],
        source_id=row["source_id"],
        target_id=row["target_id"],
        link_type=LinkType(row["link_type"]),
        note=row["note"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
