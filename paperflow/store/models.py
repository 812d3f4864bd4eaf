from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EntityKind(str, Enum):
    """Named entity collections of the store, valued by their API path."""

    LABEL = "tags"
    CORRESPONDENT = "correspondents"
    CUSTOM_FIELD = "custom_fields"


@dataclass
class Entity:
    id: int
    name: str
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoreDocument:
    """A document as returned by the store, labels in attachment order."""

    id: int
    title: str = ""
    labels: list[int] = field(default_factory=list)
    correspondent: int | None = None
    created: str | None = None
    content: str = ""
    custom_fields: list[dict[str, Any]] = field(default_factory=list)
    original_file_name: str | None = None

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "StoreDocument":
        return cls(
            id=int(raw["id"]),
            title=raw.get("title") or "",
            labels=[int(tag) for tag in raw.get("tags") or []],
            correspondent=raw.get("correspondent"),
            created=raw.get("created"),
            content=raw.get("content") or "",
            custom_fields=list(raw.get("custom_fields") or []),
            original_file_name=raw.get("original_file_name"),
        )


@dataclass
class DocumentUpdate:
    """Fields for one combined document update. ``None`` leaves a field untouched."""

    title: str | None = None
    created: str | None = None
    correspondent: int | None = None
    labels: list[int] | None = None
    content: str | None = None
    custom_fields: list[dict[str, Any]] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.title is not None:
            payload["title"] = self.title
        if self.created is not None:
            payload["created"] = self.created
        if self.correspondent is not None:
            payload["correspondent"] = self.correspondent
        if self.labels is not None:
            payload["tags"] = list(self.labels)
        if self.content is not None:
            payload["content"] = self.content
        if self.custom_fields is not None:
            payload["custom_fields"] = list(self.custom_fields)
        return payload
