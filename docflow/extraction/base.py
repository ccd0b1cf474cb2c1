from abc import ABC, abstractmethod

from docflow.extraction.models import ExtractionRequest, ExtractionResult


class BaseExtractor(ABC):
    """Contract for the external extraction capability."""

    @abstractmethod
    def extract(self, request: ExtractionRequest) -> ExtractionResult:
        """Classify a document and extract its header fields.

        Args:
            request: Pages (images and embedded text) of one processing document.

        Returns:
            A validated ExtractionResult.

        Raises:
            ExtractionNetworkError: on provider network failures (retryable).
            ExtractionError: on any other failure.
        """
