from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PipelineStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    SPLITTING = "splitting"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    FAILED = "failed"


class DuplicateStatus(str, Enum):
    UNCHECKED = "unchecked"
    NONE = "none"
    # Suspected by the detector, waiting for a reviewer.
    DUPLICATE = "duplicate"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class DuplicateAction(str, Enum):
    CONFIRM_DUPLICATE = "confirm_duplicate"
    REJECT_DUPLICATE = "reject_duplicate"
    MARK_AS_NEW_VERSION = "mark_as_new_version"


class TextAcquisitionDecision(str, Enum):
    EMBEDDED_TEXT = "embedded_text"
    OCR = "ocr"
    NONE = "none"


class LinkType(str, Enum):
    SUPERSEDES = "supersedes"
    ATTACHMENT_OF = "attachment_of"
    RELATED = "related"
    PO_TO_INVOICE = "po_to_invoice"
    PO_TO_DELIVERY_NOTE = "po_to_delivery_note"
    DELIVERY_NOTE_TO_INVOICE = "delivery_note_to_invoice"
    INVOICE_TO_CREDIT_NOTE = "invoice_to_credit_note"
    QUOTE_TO_PO = "quote_to_po"
    CONTRACT_TO_PO = "contract_to_po"


class ProcessingPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class UploadSource(str, Enum):
    WEB = "web"
    EMAIL = "email"
    API = "api"
    CLIENT_PORTAL = "client_portal"


class RevisionStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    SUPERSEDED = "superseded"


class DocumentCategory(str, Enum):
    ACCOUNTS_PAYABLE = "accounts_payable"
    ACCOUNTS_RECEIVABLE = "accounts_receivable"
    TREASURY = "treasury"
    TAX_COMPLIANCE = "tax_compliance"
    PAYROLL = "payroll"
    CORPORATE_SECRETARIAL = "corporate_secretarial"
    CONTRACTS = "contracts"
    FINANCIAL_REPORTS = "financial_reports"
    INSURANCE = "insurance"
    CORRESPONDENCE = "correspondence"
    OTHER = "other"


@dataclass(frozen=True)
class PageRange:
    """Inclusive 1-based page interval of a container."""

    page_from: int
    page_to: int

    @property
    def page_count(self) -> int:
        return self.page_to - self.page_from + 1


@dataclass(frozen=True)
class Document:
    """Represents a row from the documents table."""

    id: str
    tenant_id: str
    company_id: str
    original_filename: str
    mime_type: str
    size_bytes: int
    storage_key: str
    content_hash: str
    created_at: datetime | None = None
    deleted_at: datetime | None = None


@dataclass(frozen=True)
class ProcessingDocument:
    """Represents a row from the processing_documents table."""

    id: str
    document_id: str
    tenant_id: str
    company_id: str
    is_container: bool
    pipeline_status: PipelineStatus
    duplicate_status: DuplicateStatus
    lock_version: int = 0
    parent_id: str | None = None
    page_from: int | None = None
    page_to: int | None = None
    page_count: int | None = None
    duplicate_of_document_id: str | None = None
    current_revision_id: str | None = None
    priority: ProcessingPriority = ProcessingPriority.NORMAL
    source: UploadSource = UploadSource.WEB
    retry_count: int = 0
    cancel_requested: bool = False
    cancel_reason: str | None = None
    last_error: str | None = None
    error_stage: str | None = None
    failed_at: datetime | None = None
    split_ranges: list[PageRange] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def page_range(self) -> PageRange | None:
        if self.page_from is None or self.page_to is None:
            return None
        return PageRange(self.page_from, self.page_to)


@dataclass(frozen=True)
class DocumentPage:
    """Represents a row from the document_pages table."""

    id: str
    processing_document_id: str
    page_number: int
    width_px: int
    height_px: int
    rotation_deg: int
    render_dpi: int
    storage_key: str
    fingerprint: str
    text_acquisition: TextAcquisitionDecision
    native_text: str = ""
    ocr_provider: str | None = None
    created_at: datetime | None = None
    superseded_at: datetime | None = None

    @property
    def is_blank(self) -> bool:
        return self.text_acquisition is TextAcquisitionDecision.NONE


@dataclass(frozen=True)
class Counterparty:
    name: str
    role: str = ""
    tax_id: str | None = None


@dataclass(frozen=True)
class DocumentRevision:
    """Represents a row from the document_revisions table."""

    id: str
    processing_document_id: str
    category: DocumentCategory
    revision_number: int = 0
    status: RevisionStatus = RevisionStatus.DRAFT
    document_number: str | None = None
    document_date: str | None = None
    currency: str | None = None
    subtotal: float | None = None
    tax_amount: float | None = None
    total_amount: float | None = None
    counterparties: list[Counterparty] = field(default_factory=list)
    extraction_model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    created_at: datetime | None = None


@dataclass(frozen=True)
class DuplicateDecision:
    """Represents a row from the duplicate_decisions table."""

    id: str
    processing_document_id: str
    suspected_of_document_id: str
    action: DuplicateAction
    decided_by: str
    reason: str | None = None
    decided_at: datetime | None = None


@dataclass(frozen=True)
class DocumentLink:
    """Represents a row from the document_links table."""

    id: str
    tenant_id: str
    source_id: str
    target_id: str
    link_type: LinkType
    note: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class IdempotencyRecord:
    """Represents a row from the idempotency_records table.

    A record without a status code is an in-flight claim. The claim token
    identifies the caller that holds it.
    """

    tenant_id: str
    key: str
    endpoint: str
    method: str
    request_hash: str
    expires_at: datetime
    status_code: int | None = None
    response_body: str | None = None
    claim_token: str | None = None
    created_at: datetime | None = None

    @property
    def is_complete(self) -> bool:
        return self.status_code is not None


@dataclass(frozen=True)
class StateEvent:
    """Represents a row from the processing_state_events table."""

    processing_document_id: str
    from_status: PipelineStatus | None
    to_status: PipelineStatus
    trigger: str
    lock_version: int
    occurred_at: datetime | None = None
    id: int | None = None


@dataclass
class JobRecord:
    """Represents a row from the pipeline_jobs table."""

    id: int
    processing_document_id: str
    status: str
    attempts: int
    priority: ProcessingPriority = ProcessingPriority.NORMAL
    error_message: str | None = None
    available_at: datetime | None = None
    locked_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ProcessingDocumentFilter:
    """Tenant-scoped filters for listing processing documents."""

    tenant_id: str
    pipeline_status: PipelineStatus | None = None
    duplicate_status: DuplicateStatus | None = None
    is_container: bool | None = None
    company_ids: tuple[str, ...] | None = None
    parent_id: str | None = None
