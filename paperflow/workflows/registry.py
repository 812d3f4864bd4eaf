"""Workflow registry: CRUD, schema validation and label matching."""

import re
from collections.abc import Iterable
from dataclasses import asdict
from typing import Any

from paperflow.config.settings import Settings
from paperflow.database.repositories.workflow_repository import WorkflowRepository
from paperflow.logging.logger import Log
from paperflow.workflows import builtin
from paperflow.workflows.exceptions import WorkflowNotFoundError, WorkflowValidationError
from paperflow.workflows.models import (
    OutputMapping,
    SchemaValidationResult,
    Workflow,
    WorkflowDefinition,
)
from paperflow.workflows.schema import SchemaCompileError, compile_schema, validate_schema

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    return _NON_ALPHANUMERIC.sub("-", name.lower()).strip("-")


def match_workflow(workflows: Iterable[Workflow], labels: list[str]) -> Workflow | None:
    """Pick the workflow for a document from its labels in attachment order.

    The first label with any enabled workflow wins, even if a later label has a
    higher-priority one. Within a label the highest priority wins, then the
    lowest id.
    """
    by_label: dict[str, list[Workflow]] = {}
    for workflow in workflows:
        if workflow.enabled:
            by_label.setdefault(workflow.trigger_label.casefold(), []).append(workflow)

    for label in labels:
        candidates = by_label.get(label.casefold())
        if candidates:
            return min(
                candidates,
                key=lambda w: (-w.priority, w.id if w.id is not None else 0),
            )
    return None


class WorkflowRegistry:
    """Operator-managed workflows persisted in the workflows table."""

    def __init__(self, repository: WorkflowRepository, settings: Settings) -> None:
        self._repo = repository
        self._settings = settings

    async def list_workflows(self) -> list[Workflow]:
        return await self._repo.list_all()

    async def list_enabled(self) -> list[Workflow]:
        return [w for w in await self._repo.list_all() if w.enabled]

    async def active_workflows(self) -> list[Workflow]:
        """Enabled workflows, or the legacy receipt workflow if none are registered.

        Each schema is compiled here, before any document is executed. A stored
        schema that no longer compiles takes its workflow out of the scan.
        """
        workflows = await self._repo.list_all()
        if not workflows:
            workflows = [self.legacy_workflow()]
        return [w for w in workflows if w.enabled and _schema_compiles(w)]

    async def match(self, labels: list[str]) -> Workflow | None:
        return match_workflow(await self.active_workflows(), labels)

    async def get(self, workflow_id: int) -> Workflow:
        workflow = await self._repo.find_by_id(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    async def get_by_slug(self, slug: str) -> Workflow | None:
        return await self._repo.find_by_slug(slug)

    def validate_schema(self, source: str) -> SchemaValidationResult:
        return validate_schema(source)

    async def create(self, definition: WorkflowDefinition) -> Workflow:
        """Validate and persist a new workflow.

        Raises:
            WorkflowValidationError: on blank required fields, a taken slug or
                a rejected schema source.
        """
        errors = _required_field_errors(asdict(definition))
        slug = slugify(definition.name)
        if definition.name.strip() and not slug:
            errors.append("name must contain at least one letter or digit")
        if errors:
            raise WorkflowValidationError("Invalid workflow definition", errors)
        if await self._repo.find_by_slug(slug) is not None:
            raise WorkflowValidationError(f"A workflow with slug '{slug}' already exists")

        json_schema = self._compile(definition.schema_source)
        values = asdict(definition)
        values["output_mapping"] = definition.output_mapping
        values.update(slug=slug, json_schema=json_schema)
        workflow = await self._repo.insert(values)
        Log.info(f"Created workflow '{workflow.name}' (id={workflow.id}, slug={slug})")
        return workflow

    async def update(self, workflow_id: int, changes: dict[str, Any]) -> Workflow:
        """Apply changes to a workflow. The slug never changes.

        Raises:
            WorkflowNotFoundError: if the workflow does not exist.
            WorkflowValidationError: if the changes are rejected.
        """
        if "slug" in changes:
            raise WorkflowValidationError("The slug of a workflow cannot be changed")
        changes = dict(changes)
        errors = _required_field_errors(changes)
        if errors:
            raise WorkflowValidationError("Invalid workflow changes", errors)
        if "schema_source" in changes:
            changes["json_schema"] = self._compile(changes["schema_source"])
        if isinstance(changes.get("output_mapping"), dict):
            changes["output_mapping"] = OutputMapping.from_dict(changes["output_mapping"])

        try:
            workflow = await self._repo.update(workflow_id, changes)
        except ValueError as exc:
            raise WorkflowValidationError(str(exc)) from exc
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        Log.info(f"Updated workflow '{workflow.name}' (id={workflow_id})")
        return workflow

    async def delete(self, workflow_id: int) -> None:
        if not await self._repo.delete(workflow_id):
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        Log.info(f"Deleted workflow {workflow_id}")

    async def seed_defaults(self) -> bool:
        """Insert the built-in receipt workflow when no workflow exists yet."""
        if await self._repo.count() > 0:
            return False
        await self.create(builtin.receipt_definition(self._settings))
        Log.info("Seeded built-in receipt workflow")
        return True

    def legacy_workflow(self) -> Workflow:
        return builtin.legacy_workflow(self._settings)

    @staticmethod
    def _compile(source: str) -> dict[str, Any]:
        result = validate_schema(source)
        if not result.valid or result.json_schema is None:
            raise WorkflowValidationError("Schema source rejected", result.errors)
        return result.json_schema


def _schema_compiles(workflow: Workflow) -> bool:
    try:
        compile_schema(workflow.json_schema)
    except SchemaCompileError as exc:
        Log.error(f"Workflow '{workflow.name}' skipped, its schema does not compile: {exc}")
        return False
    return True


def _required_field_errors(values: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    for name in ("name", "trigger_label", "processed_label", "schema_source"):
        if name in values and not str(values[name] or "").strip():
            errors.append(f"{name} must not be blank")
    return errors
