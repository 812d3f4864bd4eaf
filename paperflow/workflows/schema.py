"""Validation and compilation of workflow extraction schemas.

Workflow authors supply a JSON Schema document. It is screened against a
denylist, parsed, and compiled into a pydantic model that later gates the
items returned by the extraction provider. Nothing the author writes is ever
executed.
"""

import json
import re
from functools import lru_cache
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError, create_model

from paperflow.extraction.exceptions import ExtractionValidationError
from paperflow.workflows.models import SchemaValidationResult

_DENYLIST: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (label, re.compile(pattern))
    for label, pattern in (
        ("import", r"\bimport\b"),
        ("require", r"\brequire\s*\("),
        ("eval", r"\beval\b"),
        ("exec", r"\bexec\b"),
        ("subprocess", r"\bsubprocess\b"),
        ("process", r"\bprocess\b"),
        ("os", r"\bos\s*\."),
        ("sys", r"\bsys\s*\."),
        ("open", r"\bopen\s*\("),
        ("socket", r"\bsocket\b"),
        ("fetch", r"\bfetch\b"),
        ("urllib", r"\burllib\b"),
        ("globals", r"\bglobals\b"),
        ("builtins", r"\bbuiltins\b"),
        ("dunder", r"__\w+__"),
        ("url", r"\b(?:https?|file|ftp)://"),
    )
)

# "$schema" holds a meta-schema URL and is removed before compilation
_SCHEMA_DECLARATION = re.compile(r'"\$schema"\s*:\s*"[^"]*"')

_SCALAR_TYPES: dict[str, type] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
}

_ALLOWED_KEYWORDS = frozenset({
    "$schema",
    "type",
    "properties",
    "required",
    "items",
    "enum",
    "description",
    "title",
    "default",
    "examples",
    "format",
    "additionalProperties",
    "minimum",
    "maximum",
    "minLength",
    "maxLength",
    "minItems",
    "maxItems",
    "pattern",
})

# JSON Schema keyword -> pydantic Field argument, per type they apply to
_NUMERIC_BOUNDS = {"minimum": "ge", "maximum": "le"}
_LENGTH_BOUNDS = {"minLength": "min_length", "maxLength": "max_length"}
_ITEM_BOUNDS = {"minItems": "min_length", "maxItems": "max_length"}


class SchemaCompileError(ValueError):
    """Raised when a schema uses a construct outside the supported subset."""


def find_dangerous_patterns(source: str) -> list[str]:
    screened = _SCHEMA_DECLARATION.sub("", source)
    return [label for label, pattern in _DENYLIST if pattern.search(screened)]


def validate_schema(source: str) -> SchemaValidationResult:
    """Screen, parse and compile a schema source.

    Returns the portable JSON Schema on success, or the list of problems.
    """
    dangerous = find_dangerous_patterns(source)
    if dangerous:
        return SchemaValidationResult(
            valid=False,
            errors=[f"Dangerous pattern detected: {label}" for label in dangerous],
        )

    try:
        parsed = json.loads(source)
    except json.JSONDecodeError as exc:
        return SchemaValidationResult(valid=False, errors=[f"Invalid JSON: {exc}"])

    if not isinstance(parsed, dict) or parsed.get("type") != "object":
        return SchemaValidationResult(
            valid=False,
            errors=["Schema root must be an object schema with type 'object'"],
        )

    portable = {key: value for key, value in parsed.items() if key != "$schema"}
    try:
        compile_schema(portable)
    except SchemaCompileError as exc:
        return SchemaValidationResult(valid=False, errors=[str(exc)])

    return SchemaValidationResult(valid=True, json_schema=portable)


def compile_schema(json_schema: dict[str, Any]) -> type[BaseModel]:
    """Compile a JSON Schema into a pydantic model, memoized per distinct schema."""
    return _compile_canonical(json.dumps(json_schema, sort_keys=True))


@lru_cache(maxsize=128)
def _compile_canonical(canonical: str) -> type[BaseModel]:
    return _build_model(json.loads(canonical), "$", "ExtractedItem")


def validate_items(json_schema: dict[str, Any], items: list[Any]) -> list[dict[str, Any]]:
    """Check extracted items against the workflow schema and return them unchanged.

    Raises:
        ExtractionValidationError: if any item does not conform.
    """
    try:
        model = compile_schema(json_schema)
    except SchemaCompileError as exc:
        raise ExtractionValidationError(f"Workflow schema cannot be compiled: {exc}") from exc

    validated: list[dict[str, Any]] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ExtractionValidationError(f"Item {index} is not an object")
        try:
            model.model_validate(item)
        except ValidationError as exc:
            raise ExtractionValidationError(
                f"Item {index} does not match the workflow schema: {exc.error_count()} error(s)"
            ) from exc
        validated.append(item)
    return validated


def _build_model(node: dict[str, Any], path: str, name: str) -> type[BaseModel]:
    properties = node.get("properties", {})
    if not isinstance(properties, dict):
        raise SchemaCompileError(f"{path}: 'properties' must be an object")
    required = node.get("required", [])
    if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
        raise SchemaCompileError(f"{path}: 'required' must be a list of property names")
    missing = sorted(set(required) - set(properties))
    if missing:
        raise SchemaCompileError(f"{path}: required properties not declared: {missing}")

    fields: dict[str, Any] = {}
    for index, (prop_name, prop_node) in enumerate(properties.items()):
        annotation = _annotation(prop_node, f"{path}.{prop_name}", f"{name}_{index}")
        if prop_name in required:
            fields[f"field_{index}"] = (annotation, Field(..., alias=prop_name))
        else:
            fields[f"field_{index}"] = (annotation | None, Field(None, alias=prop_name))

    extra = "forbid" if node.get("additionalProperties") is False else "allow"
    return create_model(name, __config__=ConfigDict(extra=extra), **fields)


def _annotation(node: Any, path: str, name: str) -> Any:
    if not isinstance(node, dict):
        raise SchemaCompileError(f"{path}: schema node must be an object")
    unknown = sorted(set(node) - _ALLOWED_KEYWORDS)
    if unknown:
        raise SchemaCompileError(f"{path}: unsupported keywords {unknown}")

    if "enum" in node:
        values = node["enum"]
        if not isinstance(values, list) or not values:
            raise SchemaCompileError(f"{path}: 'enum' must be a non-empty list")
        if not all(isinstance(v, (str, int, float, bool)) for v in values):
            raise SchemaCompileError(f"{path}: 'enum' values must be scalars")
        return Literal[tuple(values)]

    declared = node.get("type")
    nullable = False
    if isinstance(declared, list):
        nullable = "null" in declared
        concrete = [t for t in declared if t != "null"]
        if len(concrete) != 1:
            raise SchemaCompileError(f"{path}: only a single type plus 'null' is supported")
        declared = concrete[0]

    annotation: Any
    if declared in _SCALAR_TYPES:
        annotation = _SCALAR_TYPES[declared]
    elif declared == "array":
        if "items" not in node:
            raise SchemaCompileError(f"{path}: array schema needs 'items'")
        annotation = list[_annotation(node["items"], f"{path}[]", f"{name}_item")]  # type: ignore[misc]
    elif declared == "object":
        annotation = _build_model(node, path, name)
    else:
        raise SchemaCompileError(f"{path}: unsupported type {declared!r}")

    annotation = _constrained(annotation, node, declared, path)
    return annotation | None if nullable else annotation


def _constrained(annotation: Any, node: dict[str, Any], declared: str, path: str) -> Any:
    """Attach range, length, item-count and pattern keywords as pydantic constraints."""
    applicable: dict[str, str] = {}
    if declared in ("number", "integer"):
        applicable = _NUMERIC_BOUNDS
    elif declared == "string":
        applicable = _LENGTH_BOUNDS
    elif declared == "array":
        applicable = _ITEM_BOUNDS

    constraint_keys = set(_NUMERIC_BOUNDS) | set(_LENGTH_BOUNDS) | set(_ITEM_BOUNDS) | {"pattern"}
    misplaced = sorted(
        key for key in constraint_keys & set(node)
        if key not in applicable and not (key == "pattern" and declared == "string")
    )
    if misplaced:
        raise SchemaCompileError(f"{path}: {misplaced} do not apply to type {declared!r}")

    bounds: dict[str, Any] = {}
    for keyword, argument in applicable.items():
        if keyword not in node:
            continue
        value = node[keyword]
        if applicable is _NUMERIC_BOUNDS:
            valid = isinstance(value, (int, float)) and not isinstance(value, bool)
        else:
            valid = isinstance(value, int) and not isinstance(value, bool) and value >= 0
        if not valid:
            raise SchemaCompileError(f"{path}: invalid value for '{keyword}': {value!r}")
        bounds[argument] = value

    metadata: list[Any] = []
    if bounds:
        metadata.append(Field(**bounds))
    if "pattern" in node:
        metadata.append(AfterValidator(_pattern_check(node["pattern"], path)))
    if not metadata:
        return annotation
    return Annotated[(annotation, *metadata)]


def _pattern_check(pattern: Any, path: str) -> Any:
    if not isinstance(pattern, str):
        raise SchemaCompileError(f"{path}: 'pattern' must be a string")
    try:
        compiled = re.compile(pattern)
    except re.error as exc:
        raise SchemaCompileError(f"{path}: invalid pattern {pattern!r}: {exc}") from exc

    # JSON Schema patterns match anywhere unless anchored
    def check(value: str) -> str:
        if compiled.search(value) is None:
            raise ValueError(f"does not match pattern {pattern!r}")
        return value

    return check
