from unittest.mock import MagicMock

from docflow.database.models import Document, DuplicateStatus
from docflow.dedup.detector import NOT_DUPLICATE, DuplicateDetector, DuplicateResult


def _make_document(document_id: str = "doc-0") -> Document:
    return Document(
        id=document_id,
        tenant_id="tenant-a",
        company_id="company-1",
        original_filename="scan.pdf",
        mime_type="application/pdf",
        size_bytes=10,
        storage_key="k",
        content_hash="a" * 64,
    )


def _make_detector(scope_company: bool = False) -> tuple[DuplicateDetector, MagicMock, MagicMock]:
    document_repo = MagicMock()
    page_repo = MagicMock()
    return DuplicateDetector(document_repo, page_repo, scope_company), document_repo, page_repo


class TestClassify:
    def test_no_match_is_not_duplicate(self) -> None:
        detector, document_repo, _ = _make_detector()
        document_repo.find_first_by_hash.return_value = None

        result = detector.classify("a" * 64, "tenant-a", "company-1")

        assert result == NOT_DUPLICATE
        assert result.status is DuplicateStatus.NONE

    def test_match_points_at_the_earliest_document(self) -> None:
        detector, document_repo, _ = _make_detector()
        document_repo.find_first_by_hash.return_value = _make_document("doc-0")

        result = detector.classify("a" * 64, "tenant-a", "company-1")

        assert result.is_duplicate
        assert result.matched_document_id == "doc-0"
        assert result.status is DuplicateStatus.DUPLICATE

    def test_tenant_wide_by_default(self) -> None:
        detector, document_repo, _ = _make_detector()
        document_repo.find_first_by_hash.return_value = None

        detector.classify("h", "tenant-a", "company-1")

        document_repo.find_first_by_hash.assert_called_once_with(
            "tenant-a", "h", company_id=None, exclude_document_id=None
        )

    def test_company_scope_narrows_the_search(self) -> None:
        detector, document_repo, _ = _make_detector(scope_company=True)
        document_repo.find_first_by_hash.return_value = None

        detector.classify("h", "tenant-a", "company-1", exclude_document_id="doc-9")

        document_repo.find_first_by_hash.assert_called_once_with(
            "tenant-a", "h", company_id="company-1", exclude_document_id="doc-9"
        )


class TestClassifyPages:
    def test_blank_set_is_never_a_duplicate(self) -> None:
        detector, _, page_repo = _make_detector()
        assert detector.classify_pages([], "tenant-a", "doc-1") == NOT_DUPLICATE
        page_repo.find_documents_by_fingerprints.assert_not_called()

    def test_document_holding_every_page_is_a_match(self) -> None:
        detector, _, page_repo = _make_detector()
        page_repo.find_documents_by_fingerprints.return_value = {
            "doc-0": {"f1", "f2"},
        }

        result = detector.classify_pages(["f1", "f2"], "tenant-a", "doc-1")

        assert result == DuplicateResult(is_duplicate=True, matched_document_id="doc-0")

    def test_partial_overlap_is_not_a_match(self) -> None:
        detector, _, page_repo = _make_detector()
        page_repo.find_documents_by_fingerprints.return_value = {"doc-0": {"f1"}}

        result = detector.classify_pages(["f1", "f2"], "tenant-a", "doc-1")

        assert result == NOT_DUPLICATE

    def test_first_full_match_in_creation_order_wins(self) -> None:
        detector, _, page_repo = _make_detector()
        page_repo.find_documents_by_fingerprints.return_value = {
            "doc-partial": {"f1"},
            "doc-early": {"f1", "f2"},
            "doc-late": {"f1", "f2"},
        }

        result = detector.classify_pages(["f2", "f1", "f1"], "tenant-a", "doc-1")

        assert result.matched_document_id == "doc-early"
        page_repo.find_documents_by_fingerprints.assert_called_once_with(
            "tenant-a", ["f1", "f2"], "doc-1"
        )
