"""Tests for ExampleClientAdapter (offline reference adapter)."""

import json

import pytest

from paperflow.extraction.example_client_adapter import ExampleClientAdapter
from paperflow.workflows.builtin import RECEIPT_SCHEMA
from paperflow.workflows.schema import validate_items


async def _complete(adapter: ExampleClientAdapter, **overrides: object) -> str:
    kwargs: dict[str, object] = {
        "model": "any",
        "temperature": 0.0,
        "system_prompt": "sys",
        "user_prompt": "user",
        "image_data_url": "data:image/png;base64,AAAA",
        "json_schema": {"type": "object"},
    }
    kwargs.update(overrides)
    return await adapter.create_completion(**kwargs)  # type: ignore[arg-type]


class TestExampleClientAdapter:
    @pytest.mark.asyncio
    async def test_returns_items_json(self) -> None:
        parsed = json.loads(await _complete(ExampleClientAdapter()))
        assert len(parsed["items"]) == 1
        assert parsed["items"][0]["vendor"] == "Example Store"

    @pytest.mark.asyncio
    async def test_response_matches_receipt_schema(self) -> None:
        items = json.loads(await _complete(ExampleClientAdapter()))["items"]
        assert validate_items(RECEIPT_SCHEMA, items) == items

    @pytest.mark.asyncio
    async def test_ignores_input_parameters(self) -> None:
        adapter = ExampleClientAdapter()
        first = await _complete(adapter, model="a", temperature=1.0, user_prompt="u1")
        second = await _complete(adapter, model="b", json_schema={})
        assert first == second
