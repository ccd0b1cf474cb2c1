from dataclasses import dataclass

from docflow.database.models import DuplicateStatus
from docflow.database.repositories.document_repository import DocumentRepository
from docflow.database.repositories.page_repository import PageRepository
from docflow.logging.logger import Log


@dataclass(frozen=True)
class DuplicateResult:
    is_duplicate: bool
    matched_document_id: str | None = None

    @property
    def status(self) -> DuplicateStatus:
        return DuplicateStatus.DUPLICATE if self.is_duplicate else DuplicateStatus.NONE


NOT_DUPLICATE = DuplicateResult(is_duplicate=False)


class DuplicateDetector:
    """Advisory duplicate classification, always scoped to one tenant.

    A duplicate never blocks ingestion. It only annotates the processing
    document with the earliest matching original.
    """

    def __init__(
        self,
        document_repo: DocumentRepository,
        page_repo: PageRepository,
        scope_company: bool = False,
    ) -> None:
        self._document_repo = document_repo
        self._page_repo = page_repo
        self._scope_company = scope_company

    def classify(
        self,
        content_hash: str,
        tenant_id: str,
        company_id: str,
        exclude_document_id: str | None = None,
    ) -> DuplicateResult:
        """Match whole-file content against earlier documents."""
        match = self._document_repo.find_first_by_hash(
            tenant_id,
            content_hash,
            company_id=company_id if self._scope_company else None,
            exclude_document_id=exclude_document_id,
        )
        if match is None:
            return NOT_DUPLICATE
        Log.info(
            "Exact duplicate detected",
            tenant=tenant_id,
            original=match.id,
        )
        return DuplicateResult(is_duplicate=True, matched_document_id=match.id)

    def classify_pages(
        self,
        fingerprints: list[str],
        tenant_id: str,
        exclude_document_id: str,
    ) -> DuplicateResult:
        """Match a page set against pages of other documents.

        The set is a duplicate when one earlier document contains every page.
        Callers pass fingerprints of non-blank pages only.
        """
        wanted = set(fingerprints)
        if not wanted:
            return NOT_DUPLICATE
        matches = self._page_repo.find_documents_by_fingerprints(
            tenant_id, sorted(wanted), exclude_document_id
        )
        for document_id, shared in matches.items():
            if wanted <= shared:
                return DuplicateResult(is_duplicate=True, matched_document_id=document_id)
        return NOT_DUPLICATE
