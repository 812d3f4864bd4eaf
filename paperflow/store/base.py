from abc import ABC, abstractmethod
from typing import Any

from paperflow.store.entity_cache import EntityCache
from paperflow.store.models import DocumentUpdate, Entity, EntityKind, StoreDocument

LABEL_ATTRIBUTES: dict[str, Any] = {"matching_algorithm": 0}
LONG_TEXT_FIELD_ATTRIBUTES: dict[str, Any] = {"data_type": "longtext"}


class BaseDocumentStore(ABC):
    """Contract for document-management store clients.

    Implementations raise the ``StoreError`` family so callers can tell a
    creation conflict apart from missing, unauthorized or transient failures.
    The store owns the entity caches that resolve names to ids.
    """

    def __init__(
        self,
        *,
        label_cache_ttl_seconds: float = 30,
        field_cache_ttl_seconds: float = 600,
    ) -> None:
        self.labels = EntityCache(self, EntityKind.LABEL, label_cache_ttl_seconds)
        self.correspondents = EntityCache(self, EntityKind.CORRESPONDENT, label_cache_ttl_seconds)
        self.custom_fields = EntityCache(self, EntityKind.CUSTOM_FIELD, field_cache_ttl_seconds)

    @abstractmethod
    async def list_documents(
        self,
        *,
        include_label_ids: list[int],
        exclude_label_ids: list[int] | None = None,
    ) -> list[StoreDocument]:
        """Documents carrying every included label and none of the excluded ones."""

    @abstractmethod
    async def get_document(self, document_id: int) -> StoreDocument: ...

    @abstractmethod
    async def get_thumbnail(self, document_id: int) -> bytes: ...

    @abstractmethod
    async def get_original(self, document_id: int) -> bytes: ...

    @abstractmethod
    async def update_document(self, document_id: int, update: DocumentUpdate) -> None: ...

    @abstractmethod
    async def add_note(self, document_id: int, note: str) -> None: ...

    @abstractmethod
    async def list_entities(self, kind: EntityKind) -> list[Entity]: ...

    @abstractmethod
    async def find_entity(self, kind: EntityKind, name: str) -> Entity | None:
        """Case-insensitive exact-name lookup that bypasses any cache."""

    @abstractmethod
    async def create_entity(
        self, kind: EntityKind, name: str, attributes: dict[str, Any] | None = None
    ) -> Entity:
        """Create a named entity.

        Raises:
            StoreConflictError: if an entity with that name already exists.
        """

    async def close(self) -> None:
        """Release HTTP resources."""

    async def ensure_label(self, name: str) -> int:
        return await self.labels.ensure_exists(name, **LABEL_ATTRIBUTES)

    async def ensure_correspondent(self, name: str) -> int:
        return await self.correspondents.ensure_exists(name, **LABEL_ATTRIBUTES)

    async def ensure_custom_field(self, name: str) -> int:
        return await self.custom_fields.ensure_exists(name, **LONG_TEXT_FIELD_ATTRIBUTES)

    async def resolve_label(self, name: str) -> int | None:
        return await self.labels.resolve(name)

    async def label_names(self, label_ids: list[int]) -> list[str]:
        return await self.labels.names_for(label_ids)
