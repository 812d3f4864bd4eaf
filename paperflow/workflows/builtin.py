"""The built-in receipt workflow, seeded on first start and used as a fallback."""

import json

from paperflow.config.settings import Settings
from paperflow.workflows.models import OutputMapping, Workflow, WorkflowDefinition

RECEIPT_WORKFLOW_NAME = "Receipt"
RECEIPT_WORKFLOW_SLUG = "receipt"

RECEIPT_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "date": {"type": "string", "description": "Purchase date, YYYY-MM-DD"},
        "vendor": {"type": "string"},
        "category": {"type": "string"},
        "paymentMethod": {"type": "string"},
        "taxAmount": {"type": "number"},
        "amount": {"type": "number"},
        "currency": {"type": "string"},
        "title": {"type": "string"},
        "summary": {"type": "string"},
        "line_items": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "quantity": {"type": "number"},
                    "unitPrice": {"type": "number"},
                    "totalPrice": {"type": "number"},
                },
                "required": ["name", "totalPrice"],
            },
        },
        "suggested_tags": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["date", "vendor", "category", "paymentMethod", "taxAmount", "amount", "currency"],
}

RECEIPT_PROMPT = (
    "You are an expert at extracting receipt data. Extract every receipt visible "
    "in the image. Dates MUST be in YYYY-MM-DD format. Use ISO 4217 currency codes."
)

RECEIPT_TITLE_TEMPLATE = "{vendor} - {amount} {currency}"

RECEIPT_OUTPUT_MAPPING = OutputMapping(
    correspondent_field="vendor",
    date_field="date",
    tag_fields=["category"],
    custom_fields={"json_payload": "*"},
)


def receipt_definition(settings: Settings) -> WorkflowDefinition:
    return WorkflowDefinition(
        name=RECEIPT_WORKFLOW_NAME,
        description="Default workflow for processing receipts.",
        trigger_label=settings.receipt_label,
        schema_source=json.dumps(RECEIPT_SCHEMA, indent=2),
        prompt_instructions=RECEIPT_PROMPT,
        title_template=RECEIPT_TITLE_TEMPLATE,
        output_mapping=RECEIPT_OUTPUT_MAPPING,
        processed_label=settings.processed_label,
        failed_label=settings.failed_label,
        skipped_label=settings.skipped_label,
        priority=100,
        is_built_in=True,
    )


def legacy_workflow(settings: Settings) -> Workflow:
    """In-memory receipt workflow for deployments with no registered workflows."""
    definition = receipt_definition(settings)
    return Workflow(
        id=None,
        name=definition.name,
        slug=RECEIPT_WORKFLOW_SLUG,
        description=definition.description,
        trigger_label=definition.trigger_label,
        schema_source=definition.schema_source,
        json_schema=dict(RECEIPT_SCHEMA),
        prompt_instructions=definition.prompt_instructions,
        title_template=definition.title_template,
        output_mapping=definition.output_mapping,
        processed_label=definition.processed_label,
        failed_label=definition.failed_label,
        skipped_label=definition.skipped_label,
        priority=definition.priority,
        is_built_in=True,
    )
