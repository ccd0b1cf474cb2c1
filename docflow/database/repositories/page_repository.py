from typing import Any

from psycopg.rows import dict_row

from docflow.database.connection import get_connection
from docflow.database.models import DocumentPage, TextAcquisitionDecision

_COLUMNS = """
    id, processing_document_id, page_number, width_px, height_px,
    rotation_deg, render_dpi, storage_key, fingerprint, text_acquisition,
    native_text, ocr_provider, created_at, superseded_at
"""


class PageRepository:
    """Database operations for the document_pages table.

    Page rows are never updated in place. Re-rendering supersedes the current
    rows and inserts a fresh set in one transaction.
    """

    def replace_pages(
        self, processing_document_id: str, pages: list[DocumentPage]
    ) -> list[DocumentPage]:
        stored: list[DocumentPage] = []
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE document_pages
                SET superseded_at = NOW()
                WHERE processing_document_id = %s AND superseded_at IS NULL
                """,
                (processing_document_id,),
            )
            with conn.cursor(row_factory=dict_row) as cur:
                for page in pages:
                    cur.execute(
                        f"""
                        INSERT INTO document_pages
                        (id, processing_document_id, page_number, width_px,
                         height_px, rotation_deg, render_dpi, storage_key,
                         fingerprint, text_acquisition, native_text, ocr_provider)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_COLUMNS}
                        """,
                        (
                            page.id,
                            processing_document_id,
                            page.page_number,
                            page.width_px,
                            page.height_px,
                            page.rotation_deg,
                            page.render_dpi,
                            page.storage_key,
                            page.fingerprint,
                            page.text_acquisition.value,
                            page.native_text,
                            page.ocr_provider,
                        ),
                    )
                    row = cur.fetchone()
                    if row is None:
                        raise RuntimeError(
                            f"Page {page.page_number} of {processing_document_id} "
                            "was not returned after insert"
                        )
                    stored.append(_row_to_page(row))
            conn.commit()
        return stored

    def list_current(self, processing_document_id: str) -> list[DocumentPage]:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM document_pages
                    WHERE processing_document_id = %s AND superseded_at IS NULL
                    ORDER BY page_number
                    """,
                    (processing_document_id,),
                )
                rows = cur.fetchall()
        return [_row_to_page(row) for row in rows]

    def find_documents_by_fingerprints(
        self,
        tenant_id: str,
        fingerprints: list[str],
        exclude_document_id: str,
    ) -> dict[str, set[str]]:
        """Map each other document in the tenant to the fingerprints it shares.

        Documents come back ordered by creation, earliest first.
        """
        if not fingerprints:
            return {}
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT d.id AS document_id, p.fingerprint
                    FROM document_pages p
                    JOIN processing_documents pd ON pd.id = p.processing_document_id
                    JOIN documents d ON d.id = pd.document_id
                    WHERE pd.tenant_id = %s
                      AND p.superseded_at IS NULL
                      AND d.deleted_at IS NULL
                      AND d.id <> %s
                      AND p.fingerprint = ANY(%s)
                    ORDER BY d.created_at, d.id
                    """,
                    (tenant_id, exclude_document_id, list(fingerprints)),
                )
                rows = cur.fetchall()
        matches: dict[str, set[str]] = {}
        for row in rows:
            matches.setdefault(row["document_id"], set()).add(row["fingerprint"])
        return matches


def _row_to_page(row: dict[str, Any]) -> DocumentPage:
    return DocumentPage(
        id=row["id"],
        processing_document_id=row["processing_document_id"],
        page_number=row["page_number"],
        width_px=row["width_px"],
        height_px=row["height_px"],
        rotation_deg=row["rotation_deg"],
        render_dpi=row["render_dpi"],
        storage_key=row["storage_key"],
        fingerprint=row["fingerprint"],
        text_acquisition=TextAcquisitionDecision(row["text_acquisition"]),
        native_text=row["native_text"],
        ocr_provider=row["ocr_provider"],
        created_at=row["created_at"],
        superseded_at=row["superseded_at"],
    )
