import logging

import pytest

from docflow.events.sink import EventKind, LoggingEventSink, PipelineEvent
from docflow.logging.logger import Log


class TestLog:
    def test_appends_context_as_key_value_pairs(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="docflow"):
            Log.info("Upload accepted", tenant="t1", document="pd-1")

        assert caplog.records[-1].getMessage() == "Upload accepted tenant=t1 document=pd-1"

    def test_plain_message_without_context(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="docflow"):
            Log.warning("Queue is empty")

        assert caplog.records[-1].getMessage() == "Queue is empty"
        assert caplog.records[-1].levelno == logging.WARNING

    def test_debug_is_filtered_at_info(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="docflow"):
            Log.debug("AI raw response")

        assert caplog.records == []

    def test_exception_includes_traceback(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.ERROR, logger="docflow"):
            try:
                raise RuntimeError("boom")
            except RuntimeError:
                Log.exception("Job crashed", job=4)

        record = caplog.records[-1]
        assert record.getMessage() == "Job crashed job=4"
        assert record.exc_info is not None


class TestLoggingEventSink:
    def test_writes_event_with_details(self, caplog: pytest.LogCaptureFixture) -> None:
        event = PipelineEvent(
            kind=EventKind.DUPLICATE_DETECTED,
            tenant_id="t1",
            processing_document_id="pd-2",
            summary="Duplicate of doc-1",
            details={"original": "doc-1"},
        )

        with caplog.at_level(logging.INFO, logger="docflow"):
            LoggingEventSink().emit(event)

        assert caplog.records[-1].getMessage() == (
            "[duplicate_detected] Duplicate of doc-1 tenant=t1 document=pd-2 original=doc-1"
        )
