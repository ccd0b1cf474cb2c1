from dataclasses import dataclass, field

from docflow.database.models import Counterparty, DocumentCategory, TextAcquisitionDecision


@dataclass(frozen=True)
class PageInput:
    """One page handed to the extraction service."""

    page_number: int
    text_acquisition: TextAcquisitionDecision
    native_text: str = ""
    image_png: bytes | None = None


@dataclass(frozen=True)
class ExtractionRequest:
    processing_document_id: str
    tenant_id: str
    file_name: str
    mime_type: str
    pages: list[PageInput] = field(default_factory=list)


@dataclass(frozen=True)
class UsageMetadata:
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class ExtractionResult:
    """Validated output of the extraction step.

    The category tags which of the optional fields are guaranteed: monetary
    categories always carry currency and total, contracts always name at
    least one counterparty.
    """

    category: DocumentCategory
    document_number: str | None = None
    document_date: str | None = None
    currency: str | None = None
    subtotal: float | None = None
    tax_amount: float | None = None
    total_amount: float | None = None
    counterparties: list[Counterparty] = field(default_factory=list)
    usage: UsageMetadata | None = None


@dataclass(frozen=True)
class ClientResponse:
    """Raw provider answer with token accounting."""

    content: str
    input_tokens: int = 0
    output_tokens: int = 0
