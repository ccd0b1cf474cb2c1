import json
from dataclasses import dataclass
from typing import Any

from docflow.database.models import PageRange, ProcessingPriority, UploadSource


@dataclass(frozen=True)
class SubmitRequest:
    """One upload as handed over by the outer API layer."""

    tenant_id: str
    company_id: str
    file_bytes: bytes
    filename: str
    mime_type: str
    priority: ProcessingPriority = ProcessingPriority.NORMAL
    source: UploadSource = UploadSource.WEB
    idempotency_key: str | None = None
    # None lets the gateway decide from the mime type.
    is_container: bool | None = None
    split_ranges: list[PageRange] | None = None


@dataclass(frozen=True)
class SubmitResponse:
    """HTTP-style result. The body is the exact text stored for replays."""

    status_code: int
    body: str
    replayed: bool = False

    def json(self) -> dict[str, Any]:
        return json.loads(self.body)
