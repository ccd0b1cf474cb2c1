"""Example extraction client adapter.

Use this module as a reference when implementing new provider adapters.
Implement BaseExtractionClient and register the provider in ExtractorFactory.
"""

import json
from typing import ClassVar

from docflow.extraction.client_base import BaseExtractionClient
from docflow.extraction.models import ClientResponse


class ExampleClientAdapter(BaseExtractionClient):
    """Example adapter that returns a fixed valid extraction JSON.

    No network calls. Useful for local development, tests, and as a template
    for building real provider adapters.
    """

    DEFAULT_RESPONSE: ClassVar[dict[str, object]] = {
        "category": "other",
        "document_number": None,
        "document_date": None,
        "currency": None,
        "subtotal": None,
        "tax_amount": None,
        "total_amount": None,
        "counterparties": [],
    }

    def __init__(self, response: dict[str, object] | None = None) -> None:
        self._response = response if response is not None else self.DEFAULT_RESPONSE

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
        _ = model, temperature, system_prompt, json_schema
        return ClientResponse(
            content=json.dumps(self._response),
            input_tokens=len(user_prompt.split()) + len(images),
            output_tokens=0,
        )
