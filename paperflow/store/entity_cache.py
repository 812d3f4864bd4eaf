"""TTL cache with race-safe get-or-create for named store entities."""

import asyncio
import time
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from paperflow.logging.logger import Log
from paperflow.store.exceptions import StoreConflictError
from paperflow.store.models import Entity, EntityKind

if TYPE_CHECKING:
    from paperflow.store.base import BaseDocumentStore


def _key(name: str) -> str:
    return name.strip().casefold()


class EntityCache:
    """Name to entity map for one entity kind, rebuilt from the store on expiry.

    Lookups go cache, then a direct exact-name query, then creation. A creation
    that conflicts with a concurrent creator refreshes the cache and re-resolves,
    so every caller ends up with the same canonical id.
    """

    def __init__(
        self,
        store: "BaseDocumentStore",
        kind: EntityKind,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._kind = kind
        self._ttl = ttl_seconds
        self._clock = clock
        self._by_name: dict[str, Entity] = {}
        self._by_id: dict[int, Entity] = {}
        self._refreshed_at: float | None = None
        self._refresh_lock = asyncio.Lock()
        self._create_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @property
    def kind(self) -> EntityKind:
        return self._kind

    def is_stale(self) -> bool:
        if self._refreshed_at is None:
            return True
        return self._clock() - self._refreshed_at >= self._ttl

    def invalidate(self) -> None:
        self._refreshed_at = None

    async def refresh(self, force: bool = False) -> None:
        async with self._refresh_lock:
            if not force and not self.is_stale():
                return
            entities = await self._store.list_entities(self._kind)
            self._by_name = {_key(entity.name): entity for entity in entities}
            self._by_id = {entity.id: entity for entity in entities}
            self._refreshed_at = self._clock()
            Log.debug(f"Refreshed {self._kind.value} cache: {len(entities)} entries")

    async def resolve(self, name: str) -> int | None:
        """Id of the entity with this name (case-insensitive), or None."""
        key = _key(name)
        if not key:
            return None
        if self.is_stale():
            await self.refresh()
        cached = self._by_name.get(key)
        if cached is not None:
            return cached.id

        found = await self._store.find_entity(self._kind, name.strip())
        if found is None:
            return None
        self._remember(found)
        return found.id

    async def ensure_exists(self, name: str, **attributes: Any) -> int:
        """Id of the named entity, creating it when the store has none.

        Raises:
            ValueError: if the name is blank.
            StoreConflictError: if creation conflicts and the entity still
                cannot be found afterwards.
        """
        key = _key(name)
        if not key:
            raise ValueError(f"Cannot resolve a blank {self._kind.value} name")

        lock = self._create_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                return await self._resolve_or_create(name, attributes)
        finally:
            # drop the lock once the last caller for this name is through
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._create_locks[key]

    async def _resolve_or_create(self, name: str, attributes: dict[str, Any]) -> int:
        existing = await self.resolve(name)
        if existing is not None:
            return existing
        try:
            created = await self._store.create_entity(self._kind, name.strip(), attributes)
        except StoreConflictError:
            Log.info(f"{self._kind.value} '{name}' was created concurrently, re-resolving")
            await self.refresh(force=True)
            existing = await self.resolve(name)
            if existing is not None:
                return existing
            raise
        self._remember(created)
        Log.info(f"Created {self._kind.value} '{created.name}' (id={created.id})")
        return created.id

    async def ensure_all(self, names: Iterable[str], **attributes: Any) -> list[int]:
        """Resolve-or-create each distinct name, keeping first-seen order."""
        ids: list[int] = []
        for name in names:
            entity_id = await self.ensure_exists(name, **attributes)
            if entity_id not in ids:
                ids.append(entity_id)
        return ids

    async def names_for(self, ids: Iterable[int]) -> list[str]:
        """Names for the given ids in the same order.

        Ids still unknown after the regular TTL refresh are dropped.
        """
        wanted = list(ids)
        if self.is_stale():
            await self.refresh()
        return [self._by_id[entity_id].name for entity_id in wanted if entity_id in self._by_id]

    def _remember(self, entity: Entity) -> None:
        self._by_name[_key(entity.name)] = entity
        self._by_id[entity.id] = entity
