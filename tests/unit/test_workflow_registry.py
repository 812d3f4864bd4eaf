import json
from unittest.mock import patch

import pytest

from paperflow.workflows.builtin import RECEIPT_SCHEMA, RECEIPT_WORKFLOW_SLUG
from paperflow.workflows.exceptions import WorkflowNotFoundError, WorkflowValidationError
from paperflow.workflows.models import OutputMapping, WorkflowDefinition
from paperflow.workflows.registry import WorkflowRegistry, match_workflow, slugify
from paperflow.workflows.schema import compile_schema


def _definition(**overrides: object) -> WorkflowDefinition:
    values: dict[str, object] = {
        "name": "Utility Bill",
        "trigger_label": "bill",
        "schema_source": json.dumps(
            {
                "type": "object",
                "properties": {"provider": {"type": "string"}, "total": {"type": "number"}},
                "required": ["provider"],
            }
        ),
        "processed_label": "bill-processed",
        "priority": 10,
    }
    values.update(overrides)
    return WorkflowDefinition(**values)  # type: ignore[arg-type]


@pytest.fixture
def registry(workflow_repo, settings) -> WorkflowRegistry:
    return WorkflowRegistry(workflow_repo, settings)


class TestSlugify:
    @pytest.mark.parametrize(
        ("name", "slug"),
        [
            ("Receipt", "receipt"),
            ("Utility Bill", "utility-bill"),
            ("  Tax -- Forms 2024! ", "tax-forms-2024"),
            ("Café Rechnung", "caf-rechnung"),
        ],
    )
    def test_slugify(self, name: str, slug: str) -> None:
        assert slugify(name) == slug


class TestMatchWorkflow:
    def test_label_order_beats_priority(self, make_workflow) -> None:
        low = make_workflow(id=1, trigger_label="invoice", priority=1)
        high = make_workflow(id=2, trigger_label="receipt", priority=100)

        assert match_workflow([high, low], ["invoice", "receipt"]) is low
        assert match_workflow([high, low], ["receipt", "invoice"]) is high

    def test_highest_priority_within_label_then_lowest_id(self, make_workflow) -> None:
        a = make_workflow(id=3, priority=5)
        b = make_workflow(id=2, priority=50)
        c = make_workflow(id=1, priority=50)

        assert match_workflow([a, b, c], ["receipt"]) is c

    def test_case_insensitive_and_skips_disabled(self, make_workflow) -> None:
        disabled = make_workflow(id=1, priority=100, enabled=False)
        enabled = make_workflow(id=2, priority=1)

        assert match_workflow([disabled, enabled], ["RECEIPT"]) is enabled

    def test_no_match(self, make_workflow) -> None:
        assert match_workflow([make_workflow()], ["other"]) is None
        assert match_workflow([], ["receipt"]) is None

    def test_deterministic_regardless_of_input_order(self, make_workflow) -> None:
        workflows = [make_workflow(id=i, priority=10) for i in (4, 2, 9)]
        assert match_workflow(workflows, ["receipt"]).id == 2  # type: ignore[union-attr]
        assert match_workflow(list(reversed(workflows)), ["receipt"]).id == 2  # type: ignore[union-attr]


class TestCreate:
    @pytest.mark.asyncio
    async def test_persists_with_slug_and_compiled_schema(self, registry: WorkflowRegistry) -> None:
        workflow = await registry.create(_definition())

        assert workflow.id == 1
        assert workflow.slug == "utility-bill"
        assert workflow.json_schema["required"] == ["provider"]
        assert isinstance(workflow.output_mapping, OutputMapping)

    @pytest.mark.asyncio
    async def test_rejects_dangerous_schema(self, registry: WorkflowRegistry, workflow_repo) -> None:
        with pytest.raises(WorkflowValidationError) as exc_info:
            await registry.create(_definition(schema_source='{"type": "object", "x": "eval"}'))

        assert any("Dangerous" in error for error in exc_info.value.errors)
        assert await workflow_repo.count() == 0

    @pytest.mark.asyncio
    async def test_rejects_duplicate_slug(self, registry: WorkflowRegistry) -> None:
        await registry.create(_definition())
        with pytest.raises(WorkflowValidationError):
            await registry.create(_definition(name="utility bill"))

    @pytest.mark.asyncio
    async def test_rejects_blank_required_fields(self, registry: WorkflowRegistry) -> None:
        with pytest.raises(WorkflowValidationError) as exc_info:
            await registry.create(_definition(trigger_label=" ", processed_label=""))
        assert len(exc_info.value.errors) == 2


class TestUpdateDelete:
    @pytest.mark.asyncio
    async def test_update_recompiles_schema(self, registry: WorkflowRegistry) -> None:
        created = await registry.create(_definition())
        new_source = json.dumps({"type": "object", "properties": {"amount": {"type": "number"}}})

        updated = await registry.update(created.id, {"schema_source": new_source, "priority": 99})  # type: ignore[arg-type]

        assert updated.priority == 99
        assert updated.json_schema == json.loads(new_source)
        assert updated.slug == created.slug

    @pytest.mark.asyncio
    async def test_slug_is_immutable(self, registry: WorkflowRegistry) -> None:
        created = await registry.create(_definition())
        with pytest.raises(WorkflowValidationError):
            await registry.update(created.id, {"slug": "renamed"})  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_output_mapping_dict_is_converted(self, registry: WorkflowRegistry) -> None:
        created = await registry.create(_definition())
        updated = await registry.update(
            created.id,  # type: ignore[arg-type]
            {"output_mapping": {"correspondent_field": "provider", "tag_fields": ["kind"]}},
        )
        assert updated.output_mapping.correspondent_field == "provider"
        assert updated.output_mapping.tag_fields == ["kind"]

    @pytest.mark.asyncio
    async def test_unknown_id(self, registry: WorkflowRegistry) -> None:
        with pytest.raises(WorkflowNotFoundError):
            await registry.update(404, {"priority": 1})
        with pytest.raises(WorkflowNotFoundError):
            await registry.delete(404)
        with pytest.raises(WorkflowNotFoundError):
            await registry.get(404)

    @pytest.mark.asyncio
    async def test_delete(self, registry: WorkflowRegistry) -> None:
        created = await registry.create(_definition())
        await registry.delete(created.id)  # type: ignore[arg-type]
        assert await registry.list_workflows() == []


class TestDefaults:
    @pytest.mark.asyncio
    async def test_seed_inserts_receipt_workflow_once(self, registry: WorkflowRegistry) -> None:
        assert await registry.seed_defaults() is True
        assert await registry.seed_defaults() is False

        workflows = await registry.list_workflows()
        assert len(workflows) == 1
        receipt = workflows[0]
        assert receipt.slug == RECEIPT_WORKFLOW_SLUG
        assert receipt.is_built_in is True
        assert receipt.priority == 100
        assert receipt.trigger_label == "receipt"
        assert receipt.json_schema == RECEIPT_SCHEMA
        assert receipt.output_mapping.custom_fields == {"json_payload": "*"}

    @pytest.mark.asyncio
    async def test_active_workflows_fall_back_to_legacy(self, registry: WorkflowRegistry) -> None:
        active = await registry.active_workflows()

        assert len(active) == 1
        assert active[0].id is None
        assert active[0].trigger_label == "receipt"
        assert await registry.match(["receipt"]) == active[0]

    @pytest.mark.asyncio
    async def test_no_legacy_fallback_when_all_disabled(self, registry: WorkflowRegistry) -> None:
        await registry.create(_definition(enabled=False))
        assert await registry.active_workflows() == []
        assert await registry.list_enabled() == []

    @pytest.mark.asyncio
    async def test_get_by_slug(self, registry: WorkflowRegistry) -> None:
        await registry.create(_definition())
        found = await registry.get_by_slug("utility-bill")
        assert found is not None
        assert found.name == "Utility Bill"
        assert await registry.get_by_slug("missing") is None


class TestSchemaCompilation:
    @pytest.mark.asyncio
    async def test_active_workflows_compile_their_schemas(
        self, registry: WorkflowRegistry, make_workflow, workflow_repo
    ) -> None:
        workflow_repo.rows[1] = make_workflow(id=1)

        with patch(
            "paperflow.workflows.registry.compile_schema", wraps=compile_schema
        ) as compiled:
            active = await registry.active_workflows()

        assert [w.id for w in active] == [1]
        compiled.assert_called_once_with(RECEIPT_SCHEMA)

    @pytest.mark.asyncio
    async def test_workflow_with_broken_stored_schema_is_left_out(
        self, registry: WorkflowRegistry, make_workflow, workflow_repo
    ) -> None:
        workflow_repo.rows[1] = make_workflow(id=1)
        workflow_repo.rows[2] = make_workflow(
            id=2,
            slug="broken",
            trigger_label="broken",
            json_schema={"type": "object", "properties": {"x": {"type": "date"}}},
        )

        active = await registry.active_workflows()

        assert [w.id for w in active] == [1]
        assert await registry.match(["broken"]) is None
