from typing import Any

import httpx
import openai

from paperflow.extraction.client_base import BaseExtractionClient
from paperflow.extraction.exceptions import ExtractionError, ExtractionNetworkError

_RESPONSE_NAME = "extraction_result"


def _response_format(json_schema: dict[str, object]) -> dict[str, Any]:
    # author schemas rarely mark every property required, which strict mode demands
    return {
        "type": "json_schema",
        "json_schema": {"name": _RESPONSE_NAME, "strict": False, "schema": json_schema},
    }


def _vision_messages(system_prompt: str, user_prompt: str, image_data_url: str) -> list[Any]:
    user_parts = [
        {"type": "text", "text": user_prompt},
        {"type": "image_url", "image_url": {"url": image_data_url}},
    ]
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_parts},
    ]


class OpenAIClientAdapter(BaseExtractionClient):
    """Vision extraction over any OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        *,
        api_key: str,
        timeout_seconds: int,
        base_url: str | None = None,
    ) -> None:
        self._client = openai.AsyncOpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout_seconds
        )

    async def create_completion(
        self,
        *,
        model: str,
        temperature: float,
        system_prompt: str,
        user_prompt: str,
        image_data_url: str,
        json_schema: dict[str, object],
    ) -> str:
        request = self._client.chat.completions.create(
            model=model,
            temperature=temperature,
            messages=_vision_messages(system_prompt, user_prompt, image_data_url),
            response_format=_response_format(json_schema),
        )
        try:
            completion = await request
        except (openai.APIConnectionError, httpx.ConnectError, httpx.TimeoutException) as exc:
            raise ExtractionNetworkError(f"AI provider network error: {exc}") from exc
        except openai.APIError as exc:
            raise ExtractionNetworkError(f"AI provider API error: {exc}") from exc

        if not completion.choices:
            raise ExtractionError("AI returned no choices")
        text = completion.choices[0].message.content
        if text is None:
            raise ExtractionError("AI returned empty response")
        return text

    async def close(self) -> None:
        await self._client.close()
