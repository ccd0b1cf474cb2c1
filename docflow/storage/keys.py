"""Storage key layout for originals and rendered pages."""

import re

_MIME_EXTENSIONS = {
    "application/pdf": ".pdf",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/tiff": ".tiff",
}
_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,10}$")


def file_extension(filename: str, mime_type: str) -> str:
    """Return a safe extension for the original, falling back to the mime type."""
    _, dot, suffix = filename.rpartition(".")
    suffix = suffix.lower()
    if dot and _EXTENSION_RE.match(suffix):
        return f".{suffix}"
    return _MIME_EXTENSIONS.get(mime_type, "")


def document_prefix(tenant_id: str, company_id: str, document_id: str) -> str:
    return f"{tenant_id}/companies/{company_id}/documents/{document_id}"


def original_key(
    tenant_id: str, company_id: str, document_id: str, filename: str, mime_type: str
) -> str:
    prefix = document_prefix(tenant_id, company_id, document_id)
    return f"{prefix}/original{file_extension(filename, mime_type)}"


def page_key(
    tenant_id: str, company_id: str, document_id: str, dpi: int, page_number: int
) -> str:
    prefix = document_prefix(tenant_id, company_id, document_id)
    return f"{prefix}/pages/{dpi}/{page_number}.png"
