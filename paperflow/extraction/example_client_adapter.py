"""Example extraction client adapter.

Reference for writing new provider adapters: implement BaseExtractionClient
and register the provider in ExtractorFactory.
"""

import json
from typing import ClassVar

from paperflow.extraction.client_base import BaseExtractionClient


class ExampleClientAdapter(BaseExtractionClient):
    """Offline adapter that answers every request with one fixed receipt.

    Makes no network calls; handy for local runs against a real document store.
    """

    DEFAULT_RESPONSE: ClassVar[dict[str, object]] = {
        "items": [
            {
                "date": "2024-01-15",
                "vendor": "Example Store",
                "category": "groceries",
                "paymentMethod": "card",
                "taxAmount": 1.9,
                "amount": 11.9,
                "currency": "EUR",
                "summary": "Example receipt produced without calling an AI provider.",
            }
        ]
    }

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
        _ = model, temperature, system_prompt, user_prompt, image_data_url, json_schema
        return json.dumps(self.DEFAULT_RESPONSE)
