from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

from docflow.logging.logger import Log


class EventKind(str, Enum):
    UPLOAD_ACCEPTED = "upload_accepted"
    DUPLICATE_DETECTED = "duplicate_detected"
    DUPLICATE_DECIDED = "duplicate_decided"
    STAGE_TRANSITION = "stage_transition"
    TERMINAL_STATE = "terminal_state"


@dataclass(frozen=True)
class PipelineEvent:
    """Audit record handed to the event sink."""

    kind: EventKind
    tenant_id: str
    processing_document_id: str
    summary: str
    details: dict[str, object] = field(default_factory=dict)


class BaseEventSink(ABC):
    """Contract for audit and notification collaborators."""

    @abstractmethod
    def emit(self, event: PipelineEvent) -> None:
        """Deliver one event. Must not raise for delivery problems."""


class LoggingEventSink(BaseEventSink):
    """Writes every event to the application log."""

    def emit(self, event: PipelineEvent) -> None:
        Log.info(
            f"[{event.kind.value}] {event.summary}",
            tenant=event.tenant_id,
            document=event.processing_document_id,
            **event.details,
        )
