"""Vision extraction of structured records from document images."""

import base64
import json
from pathlib import Path
from typing import Any

from paperflow.extraction.client_base import BaseExtractionClient
from paperflow.extraction.exceptions import ExtractionError, ExtractionValidationError
from paperflow.extraction.prompt_loader import load_prompt_template
from paperflow.logging.logger import Log

DEFAULT_INSTRUCTIONS = "Extract every record visible in the image."

SYSTEM_PROMPT = (
    "You extract structured data from document images. "
    "Answer with a single JSON object and nothing else."
)


def wrap_items_schema(json_schema: dict[str, Any]) -> dict[str, Any]:
    """Schema for the provider response: an ``items`` array of author records."""
    return {
        "type": "object",
        "properties": {"items": {"type": "array", "items": json_schema}},
        "required": ["items"],
        "additionalProperties": False,
    }


class Extractor:
    """Turns a document image into zero or more records using an AI provider."""

    def __init__(
        self,
        *,
        client: BaseExtractionClient,
        model: str,
        temperature: float = 0.0,
        prompt_template_path: Path | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = max(0.0, min(1.0, temperature))
        self._prompt_template = load_prompt_template(prompt_template_path)

    async def extract(
        self,
        *,
        image: bytes,
        mime_type: str,
        json_schema: dict[str, Any],
        prompt_instructions: str | None = None,
        existing_labels: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Extract records from an image.

        An empty list means the image holds nothing matching the schema, which
        is a valid outcome rather than an error.

        Raises:
            ExtractionNetworkError: if the provider cannot be reached.
            ExtractionError: if the response is not usable JSON.
        """
        prompt = self._build_prompt(json_schema, prompt_instructions, existing_labels or [])
        Log.debug(f"Extraction prompt:\n{prompt}")

        raw_response = await self._client.create_completion(
            model=self._model,
            temperature=self._temperature,
            system_prompt=SYSTEM_PROMPT,
            user_prompt=prompt,
            image_data_url=_data_url(image, mime_type),
            json_schema=wrap_items_schema(json_schema),
        )
        Log.debug(f"AI raw response:\n{raw_response}")

        items = self._parse_items(raw_response)
        Log.info(f"Extraction complete: {len(items)} item(s)")
        return items

    async def close(self) -> None:
        await self._client.close()

    def _build_prompt(
        self,
        json_schema: dict[str, Any],
        prompt_instructions: str | None,
        existing_labels: list[str],
    ) -> str:
        return self._prompt_template.format(
            instructions=(prompt_instructions or "").strip() or DEFAULT_INSTRUCTIONS,
            json_schema=json.dumps(json_schema, indent=2),
            existing_labels=", ".join(existing_labels) if existing_labels else "(none)",
        )

    @staticmethod
    def _parse_items(raw: str) -> list[dict[str, Any]]:
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

        if isinstance(parsed, dict):
            items = parsed.get("items")
        else:
            items = parsed
        if not isinstance(items, list):
            raise ExtractionValidationError("Response must contain an 'items' array")
        if not all(isinstance(item, dict) for item in items):
            raise ExtractionValidationError("Every extracted item must be an object")
        return items


def _data_url(image: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(image).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"
