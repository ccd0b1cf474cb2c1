from abc import ABC, abstractmethod

from docflow.extraction.models import ClientResponse


class BaseExtractionClient(ABC):
    """Contract for provider-specific extraction AI clients."""

    @abstractmethod
    def create_completion(
        self,
        *,
        model: str,
        temperature: float,
        system_prompt: str,
        user_prompt: str,
        images: list[bytes],
        json_schema: dict[str, object],
    ) -> ClientResponse:
        """Return the provider response text and token usage."""
