"""AI-powered document classification and header extraction."""

import json
from dataclasses import replace
from pathlib import Path

from docflow.extraction.base import BaseExtractor
from docflow.extraction.client_base import BaseExtractionClient
from docflow.extraction.exceptions import ExtractionError
from docflow.extraction.models import ExtractionRequest, ExtractionResult, UsageMetadata
from docflow.extraction.prompt_loader import load_json_schema, load_prompt_template
from docflow.extraction.validator import validate_and_build
from docflow.logging.logger import Log

_SYSTEM_PROMPT = "You extract structured data from business documents and answer only in JSON."


class Extractor(BaseExtractor):
    """Extracts structured header data from document pages using an AI provider."""

    def __init__(
        self,
        *,
        client: BaseExtractionClient,
        model: str,
        temperature: float = 0.0,
        prompt_template_path: Path | None = None,
        json_schema_path: Path | None = None,
        system_prompt: str = _SYSTEM_PROMPT,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = max(0.0, min(0.2, temperature))
        self._system_prompt = system_prompt
        self._prompt_template = load_prompt_template(prompt_template_path)
        self._json_schema = load_json_schema(json_schema_path)
        self._json_schema_dict = json.loads(self._json_schema)

    def extract(self, request: ExtractionRequest) -> ExtractionResult:
        if not request.pages:
            raise ExtractionError(f"Document {request.processing_document_id} has no pages")
        prompt = self._build_prompt(request)
        Log.debug(f"Extraction prompt:\n{prompt}")

        images = [page.image_png for page in request.pages if page.image_png is not None]
        response = self._client.create_completion(
            model=self._model,
            temperature=self._temperature,
            system_prompt=self._system_prompt,
            user_prompt=prompt,
            images=images,
            json_schema=self._json_schema_dict,
        )
        Log.debug(f"AI raw response:\n{response.content}")

        result = validate_and_build(self._parse_json(response.content))
        Log.info(
            f"Extraction complete: category={result.category.value}",
            document=request.processing_document_id,
            input_tokens=response.input_tokens,
        )
        return replace(
            result,
            usage=UsageMetadata(
                model=self._model,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
            ),
        )

    def _build_prompt(self, request: ExtractionRequest) -> str:
        sections = []
        for page in request.pages:
            text = page.native_text.strip() or "(no embedded text, read the page image)"
            sections.append(f"--- Page {page.page_number} ---\n{text}")
        return self._prompt_template.format(
            file_name=request.file_name,
            page_count=len(request.pages),
            page_text="\n".join(sections),
            json_schema=self._json_schema,
        )

    @staticmethod
    def _parse_json(raw: str) -> dict[str, object]:
        cleaned = raw.strip()
        if cleaned.startswith("```"):
            lines = cleaned.splitlines()
            if lines and lines[0].startswith("```"):
                lines = lines[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            cleaned = "\n".join(lines)

        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise ExtractionError(f"Invalid JSON response: {exc}") from exc

        if not isinstance(parsed, dict):
            raise ExtractionError("JSON response must be an object")
        return parsed
