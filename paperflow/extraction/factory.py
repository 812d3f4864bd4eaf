from typing import ClassVar

from paperflow.config.settings import Settings
from paperflow.extraction.example_client_adapter import ExampleClientAdapter
from paperflow.extraction.extractor import Extractor
from paperflow.extraction.openai_client_adapter import OpenAIClientAdapter


class ExtractorFactory:
    """Creates the extractor for the configured AI provider."""

    OPENAI_COMPATIBLE_BASE_URLS: ClassVar[dict[str, str]] = {
        "openrouter": "https://openrouter.ai/api/v1",
        "groq": "https://api.groq.com/openai/v1",
        "together": "https://api.together.xyz/v1",
        "deepseek": "https://api.deepseek.com/v1",
        "ollama": "http://localhost:11434/v1",
    }

    DEFAULT_MODELS: ClassVar[dict[str, str]] = {
        "openai": "gpt-4o-mini",
        "openrouter": "openai/gpt-4o-mini",
        "together": "meta-llama/Llama-Vision-Free",
        "ollama": "llama3.2-vision",
    }

    @classmethod
    def create(cls, settings: Settings) -> Extractor:
        """Create a configured extractor from application settings."""
        provider = settings.extraction_provider.lower()
        if provider == "example":
            return Extractor(client=ExampleClientAdapter(), model="example")
        client = OpenAIClientAdapter(
            api_key=settings.extraction_api_key or cls._placeholder_key(provider),
            timeout_seconds=settings.extraction_timeout_seconds,
            base_url=cls._resolve_base_url(provider, settings),
        )
        return Extractor(
            client=client,
            model=cls._resolve_model_name(provider, settings),
            temperature=settings.extraction_temperature,
        )

    @classmethod
    def _resolve_base_url(cls, provider: str, settings: Settings) -> str | None:
        override = settings.extraction_base_url.strip()
        if provider == "openai":
            return override or None
        if provider == "openai_compatible":
            if not override:
                raise ValueError(
                    "extraction_base_url is required for extraction_provider=openai_compatible"
                )
            return override
        default_base_url = cls.OPENAI_COMPATIBLE_BASE_URLS.get(provider)
        if default_base_url is not None:
            return override or default_base_url
        supported = [
            "example",
            "openai",
            "openai_compatible",
            *sorted(cls.OPENAI_COMPATIBLE_BASE_URLS),
        ]
        raise ValueError(f"Unknown extraction provider '{provider}'. Choose from: {supported}")

    @classmethod
    def _resolve_model_name(cls, provider: str, settings: Settings) -> str:
        model = settings.extraction_model_name.strip() or cls.DEFAULT_MODELS.get(provider, "")
        if not model:
            raise ValueError(f"extraction_model_name is required for provider '{provider}'")
        return model

    @staticmethod
    def _placeholder_key(provider: str) -> str:
        # local servers such as ollama accept any key but the SDK insists on one
        if provider == "ollama":
            return "ollama"
        raise ValueError(f"extraction_api_key is required for provider '{provider}'")
