import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import patch

import pytest
from fakes import FakePipeline, build_fake_pipeline

from docflow.database.models import (
    DuplicateStatus,
    PageRange,
    PipelineStatus,
    ProcessingDocument,
    ProcessingPriority,
)
from docflow.events.sink import EventKind
from docflow.exceptions import (
    IdempotencyKeyMismatchError,
    InvalidRequestError,
    StaleLockVersionError,
)
from docflow.gateway.ingestion_gateway import ACCEPTED, DUPLICATE_MESSAGE
from docflow.gateway.models import SubmitRequest, SubmitResponse
from docflow.storage.exceptions import StorageError


def _make_request(**overrides: Any) -> SubmitRequest:
    values: dict[str, Any] = {
        "tenant_id": "tenant-a",
        "company_id": "company-1",
        "file_bytes": b"%PDF-1.4 fake invoice bytes",
        "filename": "invoice.pdf",
        "mime_type": "application/pdf",
    }
    values.update(overrides)
    return SubmitRequest(**values)


def _assert_nothing_stored(pipeline: FakePipeline) -> None:
    assert pipeline.blobs.blobs == {}
    assert pipeline.processing.documents == {}
    assert pipeline.jobs.jobs == {}
    assert pipeline.idempotency_repo.records == {}


class TestAccept:
    def test_returns_202_with_queued_document(self) -> None:
        pipeline = build_fake_pipeline()

        response = pipeline.gateway.submit(_make_request())

        body = response.json()
        assert response.status_code == ACCEPTED
        assert not response.replayed
        assert body["pipelineStatus"] == "queued"
        assert body["isContainer"] is True
        assert body["duplicateWarning"] is None
        document = pipeline.tracker.get(body["processingDocumentId"])
        assert document.document_id == body["documentId"]

    def test_stores_original_under_tenant_prefix(self) -> None:
        pipeline = build_fake_pipeline()
        body = pipeline.gateway.submit(_make_request()).json()

        [key] = pipeline.blobs.blobs
        assert key == f"tenant-a/companies/company-1/documents/{body['documentId']}/original.pdf"
        stored = pipeline.documents.documents[body["documentId"]]
        assert stored.storage_key == key
        assert stored.size_bytes == len(b"%PDF-1.4 fake invoice bytes")
        assert len(stored.content_hash) == 64

    def test_enqueues_one_job_with_priority(self) -> None:
        pipeline = build_fake_pipeline()
        body = pipeline.gateway.submit(_make_request(priority=ProcessingPriority.CRITICAL)).json()

        [job] = pipeline.jobs.jobs.values()
        assert job.processing_document_id == body["processingDocumentId"]
        assert job.priority is ProcessingPriority.CRITICAL

    def test_images_are_plain_documents(self) -> None:
        pipeline = build_fake_pipeline()
        body = pipeline.gateway.submit(
            _make_request(filename="receipt.png", mime_type="image/png")
        ).json()
        assert body["isContainer"] is False

    def test_explicit_container_flag_wins(self) -> None:
        pipeline = build_fake_pipeline()
        body = pipeline.gateway.submit(_make_request(is_container=False)).json()
        assert body["isContainer"] is False

    def test_pdfs_can_default_to_documents(self) -> None:
        pipeline = build_fake_pipeline(pdf_uploads_are_containers=False)
        body = pipeline.gateway.submit(_make_request()).json()
        assert body["isContainer"] is False

    def test_emits_upload_accepted(self) -> None:
        pipeline = build_fake_pipeline()
        body = pipeline.gateway.submit(_make_request()).json()

        [event] = pipeline.sink.of_kind(EventKind.UPLOAD_ACCEPTED)
        assert event.processing_document_id == body["processingDocumentId"]
        assert event.tenant_id == "tenant-a"

    def test_split_plan_is_kept_on_the_container(self) -> None:
        pipeline = build_fake_pipeline()
        ranges = [PageRange(1, 1), PageRange(2, 4)]
        body = pipeline.gateway.submit(_make_request(split_ranges=ranges)).json()
        assert pipeline.tracker.get(body["processingDocumentId"]).split_ranges == ranges


class TestDuplicateWarning:
    def test_exact_reupload_is_accepted_with_warning(self) -> None:
        pipeline = build_fake_pipeline()
        first = pipeline.gateway.submit(_make_request()).json()

        second = pipeline.gateway.submit(_make_request(filename="copy.pdf")).json()

        assert second["duplicateWarning"] == {
            "originalDocumentId": first["documentId"],
            "message": DUPLICATE_MESSAGE,
        }
        document = pipeline.tracker.get(second["processingDocumentId"])
        assert document.duplicate_status is DuplicateStatus.DUPLICATE
        assert document.pipeline_status is PipelineStatus.QUEUED
        assert len(pipeline.sink.of_kind(EventKind.DUPLICATE_DETECTED)) == 1

    def test_always_points_at_the_earliest_original(self) -> None:
        pipeline = build_fake_pipeline()
        first = pipeline.gateway.submit(_make_request()).json()
        pipeline.gateway.submit(_make_request())

        third = pipeline.gateway.submit(_make_request()).json()

        assert third["duplicateWarning"]["originalDocumentId"] == first["documentId"]

    def test_deleted_originals_do_not_count(self) -> None:
        pipeline = build_fake_pipeline()
        first = pipeline.gateway.submit(_make_request()).json()
        pipeline.documents.soft_delete(first["documentId"])

        second = pipeline.gateway.submit(_make_request()).json()

        assert second["duplicateWarning"] is None

    def test_other_companies_match_unless_scoped(self) -> None:
        pipeline = build_fake_pipeline()
        pipeline.gateway.submit(_make_request())
        other = pipeline.gateway.submit(_make_request(company_id="company-2")).json()
        assert other["duplicateWarning"] is not None

        scoped = build_fake_pipeline(duplicate_scope_company=True)
        scoped.gateway.submit(_make_request())
        other = scoped.gateway.submit(_make_request(company_id="company-2")).json()
        assert other["duplicateWarning"] is None


class TestValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"tenant_id": ""},
            {"company_id": ""},
            {"file_bytes": b""},
            {"filename": ""},
            {"filename": "   "},
            {"filename": "a/b.pdf"},
            {"filename": "x" * 256},
            {"mime_type": "application/zip"},
            {"split_ranges": []},
            {"split_ranges": [PageRange(1, 2), PageRange(2, 3)]},
            {"split_ranges": [PageRange(2, 3)]},
            {"split_ranges": [PageRange(1, 1)], "is_container": False},
        ],
    )
    def test_rejects_invalid_request_without_side_effects(
        self, overrides: dict[str, Any]
    ) -> None:
        pipeline = build_fake_pipeline()
        with pytest.raises(InvalidRequestError):
            pipeline.gateway.submit(_make_request(idempotency_key="k", **overrides))
        _assert_nothing_stored(pipeline)

    def test_rejects_oversized_file(self) -> None:
        pipeline = build_fake_pipeline(max_file_size_bytes=10)
        with pytest.raises(InvalidRequestError, match="limit is 10 bytes"):
            pipeline.gateway.submit(_make_request())
        _assert_nothing_stored(pipeline)

    def test_invalid_request_status_code(self) -> None:
        assert InvalidRequestError.status_code == 422


class TestIdempotency:
    def test_same_key_replays_the_first_response(self) -> None:
        pipeline = build_fake_pipeline()
        first = pipeline.gateway.submit(_make_request(idempotency_key="k-1"))

        second = pipeline.gateway.submit(_make_request(idempotency_key="k-1"))

        assert second.replayed
        assert second.status_code == first.status_code
        assert second.body == first.body
        assert len(pipeline.documents.documents) == 1
        assert len(pipeline.jobs.jobs) == 1

    def test_replay_does_not_emit_events_again(self) -> None:
        pipeline = build_fake_pipeline()
        pipeline.gateway.submit(_make_request(idempotency_key="k-1"))
        pipeline.gateway.submit(_make_request(idempotency_key="k-1"))
        assert len(pipeline.sink.of_kind(EventKind.UPLOAD_ACCEPTED)) == 1

    def test_same_key_with_different_file_is_rejected(self) -> None:
        pipeline = build_fake_pipeline()
        pipeline.gateway.submit(_make_request(idempotency_key="k-1"))

        with pytest.raises(IdempotencyKeyMismatchError):
            pipeline.gateway.submit(
                _make_request(idempotency_key="k-1", file_bytes=b"%PDF-1.4 another file")
            )
        assert len(pipeline.documents.documents) == 1

    def test_same_key_with_different_metadata_is_rejected(self) -> None:
        pipeline = build_fake_pipeline()
        pipeline.gateway.submit(_make_request(idempotency_key="k-1"))
        with pytest.raises(IdempotencyKeyMismatchError):
            pipeline.gateway.submit(
                _make_request(idempotency_key="k-1", priority=ProcessingPriority.HIGH)
            )

    def test_same_key_in_another_tenant_is_independent(self) -> None:
        pipeline = build_fake_pipeline()
        pipeline.gateway.submit(_make_request(idempotency_key="k-1"))
        other = pipeline.gateway.submit(_make_request(idempotency_key="k-1", tenant_id="tenant-b"))
        assert not other.replayed
        assert len(pipeline.documents.documents) == 2

    def test_concurrent_submissions_create_one_document(self) -> None:
        pipeline = build_fake_pipeline()
        request = _make_request(idempotency_key="k-race")
        barrier = threading.Barrier(6)

        def submit(_: int) -> tuple[str, bool]:
            barrier.wait()
            response = pipeline.gateway.submit(request)
            return response.body, response.replayed

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(submit, range(6)))

        assert len({body for body, _ in results}) == 1
        assert [replayed for _, replayed in results].count(False) == 1
        assert len(pipeline.documents.documents) == 1
        assert len(pipeline.processing.documents) == 1
        assert len(pipeline.jobs.jobs) == 1

    def test_late_caller_withdraws_after_losing_its_claim(self) -> None:
        pipeline = build_fake_pipeline()
        request = _make_request(idempotency_key="k-1")
        real_queue = pipeline.tracker.queue
        winner: list[SubmitResponse] = []

        def queue_then_lose_the_lease(processing_document_id: str) -> ProcessingDocument:
            queued = real_queue(processing_document_id)
            if len(pipeline.processing.documents) == 1:
                # The lease runs out and a retry of the same request takes the key over.
                [record_key] = pipeline.idempotency_repo.records
                record = pipeline.idempotency_repo.records[record_key]
                pipeline.idempotency_repo.records[record_key] = replace(
                    record, expires_at=datetime.now(timezone.utc) - timedelta(seconds=1)
                )
                winner.append(pipeline.gateway.submit(request))
            return queued

        with patch.object(pipeline.tracker, "queue", side_effect=queue_then_lose_the_lease):
            late = pipeline.gateway.submit(request)

        [first] = winner
        assert not first.replayed
        assert late.replayed
        assert late.body == first.body
        live = [d for d in pipeline.documents.documents.values() if d.deleted_at is None]
        assert [d.id for d in live] == [first.json()["documentId"]]
        assert len(pipeline.blobs.blobs) == 1
        withdrawn = [
            d for d in pipeline.processing.documents.values()
            if d.id != first.json()["processingDocumentId"]
        ]
        assert [d.pipeline_status for d in withdrawn] == [PipelineStatus.FAILED]
        assert withdrawn[0].error_stage == "ingestion"
        assert len(pipeline.sink.of_kind(EventKind.UPLOAD_ACCEPTED)) == 1


class TestFailureCleanup:
    def test_storage_failure_releases_the_key(self) -> None:
        pipeline = build_fake_pipeline()
        with patch.object(pipeline.blobs, "upload", side_effect=StorageError("disk full")):
            with pytest.raises(StorageError):
                pipeline.gateway.submit(_make_request(idempotency_key="k-1"))
        _assert_nothing_stored(pipeline)

        retried = pipeline.gateway.submit(_make_request(idempotency_key="k-1"))
        assert not retried.replayed

    def test_failure_after_upload_removes_blob_and_document(self) -> None:
        pipeline = build_fake_pipeline()
        with patch.object(
            pipeline.tracker, "queue", side_effect=StaleLockVersionError("moved")
        ):
            with pytest.raises(StaleLockVersionError):
                pipeline.gateway.submit(_make_request(idempotency_key="k-1"))

        assert pipeline.blobs.blobs == {}
        [document] = pipeline.documents.documents.values()
        assert document.deleted_at is not None
        assert pipeline.idempotency_repo.records == {}
        [processing_document] = pipeline.processing.documents.values()
        assert processing_document.pipeline_status is PipelineStatus.FAILED
        assert processing_document.error_stage == "ingestion"
        assert processing_document.last_error == "Ingestion failed: moved"

    def test_failed_enqueue_fails_the_queued_document(self) -> None:
        pipeline = build_fake_pipeline()
        with patch.object(pipeline.jobs, "enqueue", side_effect=RuntimeError("queue down")):
            with pytest.raises(RuntimeError, match="queue down"):
                pipeline.gateway.submit(_make_request())

        [processing_document] = pipeline.processing.documents.values()
        assert processing_document.pipeline_status is PipelineStatus.FAILED
        assert processing_document.error_stage == "ingestion"
        assert pipeline.blobs.blobs == {}

    def test_soft_deleted_leftover_is_not_a_duplicate_original(self) -> None:
        pipeline = build_fake_pipeline()
        with patch.object(pipeline.tracker, "queue", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                pipeline.gateway.submit(_make_request())

        body = pipeline.gateway.submit(_make_request()).json()
        assert body["duplicateWarning"] is None

    def test_cleanup_errors_do_not_hide_the_original_failure(self) -> None:
        pipeline = build_fake_pipeline()
        failing_create = patch.object(
            pipeline.tracker, "create", side_effect=RuntimeError("db down")
        )
        failing_delete = patch.object(
            pipeline.blobs, "delete", side_effect=StorageError("also down")
        )
        with failing_create, failing_delete:
            with pytest.raises(RuntimeError, match="db down"):
                pipeline.gateway.submit(_make_request())

