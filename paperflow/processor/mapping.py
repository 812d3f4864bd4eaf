"""Rendering extracted payloads into titles, content blocks and notes."""

import json
import re
from typing import Any

_PLACEHOLDER = re.compile(r"\{(\w+)\}")

# rendered separately (or not at all) in the content block
_NON_FIELD_KEYS = frozenset({"line_items", "suggested_tags", "conversions", "title", "summary"})

CONTENT_SEPARATOR = "\n\n---\n\n"


def format_value(value: Any) -> str:
    """Render a JSON value the way it reads in a title or content line."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def interpolate_template(template: str, data: dict[str, Any]) -> str:
    """Substitute ``{field}`` placeholders. Unknown or null fields stay verbatim."""

    def replace(match: re.Match[str]) -> str:
        value = data.get(match.group(1))
        if value is None:
            return match.group(0)
        return format_value(value)

    return _PLACEHOLDER.sub(replace, template)


def data_to_markdown(data: dict[str, Any], workflow_name: str) -> str:
    lines = [
        f"**{key[:1].upper()}{key[1:]}:** {format_value(value)}"
        for key, value in data.items()
        if key not in _NON_FIELD_KEYS
    ]
    content = f"### **{workflow_name} Data**\n" + "\n".join(lines)

    summary = data.get("summary")
    if summary:
        content = f"### **Summary**\n{summary}{CONTENT_SEPARATOR}{content}"

    line_items = data.get("line_items")
    if isinstance(line_items, list) and line_items:
        rendered = []
        for item in line_items:
            if not isinstance(item, dict):
                continue
            quantity = item.get("quantity") or 1
            price = item.get("totalPrice") or item.get("unitPrice") or "?"
            rendered.append(
                f"* {format_value(quantity)} x **{item.get('name', '?')}** - {format_value(price)}"
            )
        if rendered:
            content += "\n\n**Items:**\n" + "\n".join(rendered)

    suggested = data.get("suggested_tags")
    if isinstance(suggested, list) and suggested:
        content += "\n\n**Suggested Tags:** " + ", ".join(str(tag) for tag in suggested)

    return content


def render_content(data: dict[str, Any], workflow_name: str, existing: str) -> str:
    """Prepend the rendered payload above the original content.

    Content that already starts with the same block is returned unchanged, so
    applying a result twice does not stack copies.
    """
    block = data_to_markdown(data, workflow_name)
    if not existing:
        return block
    if existing.startswith(block):
        return existing
    return f"{block}{CONTENT_SEPARATOR}{existing}"


def build_note(data: dict[str, Any], workflow_name: str) -> str:
    summary = data.get("summary") or "Data extracted successfully."
    payload = json.dumps(data, indent=2, ensure_ascii=False)
    return f"## Workflow: {workflow_name}\n\n{summary}{CONTENT_SEPARATOR}```json\n{payload}\n```"


def field_values(value: Any) -> list[str]:
    """Label names produced by a tag field: one per non-blank string."""
    values = value if isinstance(value, list) else [value]
    names: list[str] = []
    for item in values:
        if item is None or isinstance(item, (dict, list)):
            continue
        name = format_value(item).strip()
        if name:
            names.append(name)
    return names
