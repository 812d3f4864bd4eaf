from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

WILDCARD_FIELD = "*"


@dataclass(frozen=True)
class OutputMapping:
    """How extracted fields are written back to the document store."""

    correspondent_field: str | None = None
    date_field: str | None = None
    tags_to_apply: list[str] = field(default_factory=list)
    tag_fields: list[str] = field(default_factory=list)
    # store custom field name -> extracted field name, or "*" for the whole payload
    custom_fields: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> "OutputMapping":
        raw = raw or {}
        return cls(
            correspondent_field=raw.get("correspondent_field") or None,
            date_field=raw.get("date_field") or None,
            tags_to_apply=list(raw.get("tags_to_apply") or []),
            tag_fields=list(raw.get("tag_fields") or []),
            custom_fields=dict(raw.get("custom_fields") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "correspondent_field": self.correspondent_field,
            "date_field": self.date_field,
            "tags_to_apply": list(self.tags_to_apply),
            "tag_fields": list(self.tag_fields),
            "custom_fields": dict(self.custom_fields),
        }


@dataclass(frozen=True)
class Workflow:
    """A rule binding a trigger label to an extraction schema and output mapping."""

    id: int | None
    name: str
    slug: str
    trigger_label: str
    schema_source: str
    json_schema: dict[str, Any]
    processed_label: str
    priority: int = 0
    enabled: bool = True
    description: str | None = None
    prompt_instructions: str | None = None
    title_template: str = ""
    output_mapping: OutputMapping = field(default_factory=OutputMapping)
    failed_label: str | None = None
    skipped_label: str | None = None
    is_built_in: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class WorkflowDefinition:
    """Operator-supplied fields for creating a workflow."""

    name: str
    trigger_label: str
    schema_source: str
    processed_label: str
    priority: int = 0
    enabled: bool = True
    description: str | None = None
    prompt_instructions: str | None = None
    title_template: str = ""
    output_mapping: OutputMapping = field(default_factory=OutputMapping)
    failed_label: str | None = None
    skipped_label: str | None = None
    is_built_in: bool = False


@dataclass(frozen=True)
class SchemaValidationResult:
    valid: bool
    json_schema: dict[str, Any] | None = None
    errors: list[str] = field(default_factory=list)
