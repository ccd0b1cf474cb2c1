"""Row builders shared by the database-backed tests."""

import uuid
from typing import Any

from docflow.database.models import (
    Document,
    DuplicateStatus,
    PipelineStatus,
    ProcessingDocument,
)


def make_document(tenant: str, content_hash: str = "a" * 64, company: str = "c1") -> Document:
    document_id = str(uuid.uuid4())
    return Document(
        id=document_id,
        tenant_id=tenant,
        company_id=company,
        original_filename="invoice.pdf",
        mime_type="application/pdf",
        size_bytes=1024,
        storage_key=f"{tenant}/companies/{company}/documents/{document_id}/original.pdf",
        content_hash=content_hash,
    )


def make_processing_document(document: Document, **overrides: Any) -> ProcessingDocument:
    values: dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "document_id": document.id,
        "tenant_id": document.tenant_id,
        "company_id": document.company_id,
        "is_container": False,
        "pipeline_status": PipelineStatus.PENDING,
        "duplicate_status": DuplicateStatus.NONE,
    }
    values.update(overrides)
    return ProcessingDocument(**values)
