from typing import ClassVar

from docflow.config.settings import Settings
from docflow.extraction.base import BaseExtractor
from docflow.extraction.example_client_adapter import ExampleClientAdapter
from docflow.extraction.extractor import Extractor
from docflow.extraction.openai_client_adapter import OpenAIClientAdapter


class ExtractorFactory:
    """Creates the configured extraction adapter."""

    OPENAI_COMPATIBLE_BASE_URLS: ClassVar[dict[str, str]] = {
        "openrouter": "https://openrouter.ai/api/v1",
        "groq": "https://api.groq.com/openai/v1",
        "ollama": "http://localhost:11434/v1",
    }

    @classmethod
    def create(cls, settings: Settings) -> BaseExtractor:
        """Create a configured extractor from application settings."""
        provider = settings.extraction_provider.lower()
        if provider == "example":
            return Extractor(client=ExampleClientAdapter(), model="example")
        base_url = cls._resolve_base_url(provider, settings)
        api_key, model, timeout_seconds = cls._resolve_provider_settings(provider, settings)
        client = OpenAIClientAdapter(
            api_key=api_key,
            timeout_seconds=timeout_seconds,
            base_url=base_url,
        )
        temperature = settings.extraction_openai_temperature if provider == "openai" else 0.0
        return Extractor(client=client, model=model, temperature=temperature)

    @classmethod
    def _resolve_base_url(cls, provider: str, settings: Settings) -> str | None:
        if provider == "openai":
            return None
        if provider == "openai_compatible":
            url = settings.extraction_openai_compatible_base_url.strip()
            if not url:
                raise ValueError(
                    "extraction_openai_compatible_base_url is required for "
                    "extraction_provider=openai_compatible"
                )
            return url
        default_base_url = cls.OPENAI_COMPATIBLE_BASE_URLS.get(provider)
        if default_base_url is not None:
            return default_base_url
        supported = [
            "example",
            "openai",
            "openai_compatible",
            *sorted(cls.OPENAI_COMPATIBLE_BASE_URLS),
        ]
        raise ValueError(f"Unknown extraction provider '{provider}'. Choose from: {supported}")

    @staticmethod
    def _resolve_provider_settings(provider: str, settings: Settings) -> tuple[str, str, int]:
        """Return (api_key, model_name, timeout_seconds) for a provider."""
        by_provider = {
            "openai": (
                settings.extraction_openai_api_key,
                settings.extraction_openai_model_name,
                settings.extraction_openai_timeout_seconds,
            ),
            "openai_compatible": (
                settings.extraction_openai_compatible_api_key,
                settings.extraction_openai_compatible_model_name,
                settings.extraction_openai_compatible_timeout_seconds,
            ),
            "openrouter": (
                settings.extraction_openrouter_api_key,
                settings.extraction_openrouter_model_name,
                settings.extraction_openrouter_timeout_seconds,
            ),
            "groq": (
                settings.extraction_groq_api_key,
                settings.extraction_groq_model_name,
                settings.extraction_groq_timeout_seconds,
            ),
            "ollama": (
                settings.extraction_ollama_api_key or "ollama",
                settings.extraction_ollama_model_name,
                settings.extraction_ollama_timeout_seconds,
            ),
        }
        return by_provider[provider]
