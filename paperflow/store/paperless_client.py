from typing import Any

import httpx

from paperflow.config.settings import Settings
from paperflow.logging.logger import Log
from paperflow.store.base import BaseDocumentStore
from paperflow.store.exceptions import (
    StoreAuthError,
    StoreConflictError,
    StoreError,
    StoreNotFoundError,
    StoreTransientError,
)
from paperflow.store.models import DocumentUpdate, Entity, EntityKind, StoreDocument

_CONFLICT_MARKERS = ("unique", "already exists")


class PaperlessClient(BaseDocumentStore):
    """Paperless-ngx REST API client."""

    def __init__(
        self,
        *,
        host: str,
        api_key: str,
        timeout_seconds: float = 30,
        page_size: int = 100,
        label_cache_ttl_seconds: float = 30,
        field_cache_ttl_seconds: float = 600,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            label_cache_ttl_seconds=label_cache_ttl_seconds,
            field_cache_ttl_seconds=field_cache_ttl_seconds,
        )
        self._page_size = page_size
        self._client = httpx.AsyncClient(
            base_url=f"{host.rstrip('/')}/api",
            headers={"Authorization": f"Token {api_key}", "Accept": "application/json"},
            timeout=timeout_seconds,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PaperlessClient":
        return cls(
            host=settings.paperless_host,
            api_key=settings.paperless_api_key,
            timeout_seconds=settings.paperless_timeout_seconds,
            page_size=settings.paperless_page_size,
            label_cache_ttl_seconds=settings.label_cache_ttl_seconds,
            field_cache_ttl_seconds=settings.field_cache_ttl_seconds,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # documents

    async def list_documents(
        self,
        *,
        include_label_ids: list[int],
        exclude_label_ids: list[int] | None = None,
    ) -> list[StoreDocument]:
        params: dict[str, Any] = {"page_size": self._page_size}
        if include_label_ids:
            params["tags__id__all"] = ",".join(str(i) for i in include_label_ids)
        if exclude_label_ids:
            params["tags__id__none"] = ",".join(str(i) for i in exclude_label_ids)
        return [StoreDocument.from_api(raw) for raw in await self._paginate("/documents/", params)]

    async def get_document(self, document_id: int) -> StoreDocument:
        response = await self._request("GET", f"/documents/{document_id}/")
        return StoreDocument.from_api(response.json())

    async def get_thumbnail(self, document_id: int) -> bytes:
        response = await self._request("GET", f"/documents/{document_id}/thumb/")
        return response.content

    async def get_original(self, document_id: int) -> bytes:
        response = await self._request(
            "GET", f"/documents/{document_id}/download/", params={"original": "true"}
        )
        return response.content

    async def update_document(self, document_id: int, update: DocumentUpdate) -> None:
        await self._request("PATCH", f"/documents/{document_id}/", json=update.to_payload())

    async def add_note(self, document_id: int, note: str) -> None:
        await self._request("POST", f"/documents/{document_id}/notes/", json={"note": note})

    # entities

    async def list_entities(self, kind: EntityKind) -> list[Entity]:
        raw_entities = await self._paginate(f"/{kind.value}/", {"page_size": self._page_size})
        return [_to_entity(raw) for raw in raw_entities]

    async def find_entity(self, kind: EntityKind, name: str) -> Entity | None:
        response = await self._request("GET", f"/{kind.value}/", params={"name__iexact": name})
        wanted = name.casefold()
        for raw in response.json().get("results", []):
            if str(raw.get("name", "")).casefold() == wanted:
                return _to_entity(raw)
        return None

    async def create_entity(
        self, kind: EntityKind, name: str, attributes: dict[str, Any] | None = None
    ) -> Entity:
        body = {**(attributes or {}), "name": name}
        response = await self._request("POST", f"/{kind.value}/", json=body)
        return _to_entity(response.json())

    # transport

    async def _paginate(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        response = await self._request("GET", path, params=params)
        while True:
            body = response.json()
            results.extend(body.get("results", []))
            next_url = body.get("next")
            if not next_url:
                return results
            response = await self._request("GET", next_url)

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise StoreTransientError(f"Document store unreachable: {exc}") from exc

        if response.is_success:
            return response

        status = response.status_code
        detail = response.text[:500]
        message = f"{method} {url} failed with HTTP {status}: {detail}"
        Log.debug(message)
        if status == 409 or (
            status == 400 and any(marker in detail.lower() for marker in _CONFLICT_MARKERS)
        ):
            raise StoreConflictError(message, status)
        if status == 404:
            raise StoreNotFoundError(message, status)
        if status in (401, 403):
            raise StoreAuthError(message, status)
        if status == 429 or status >= 500:
            raise StoreTransientError(message, status)
        raise StoreError(message, status)


def _to_entity(raw: dict[str, Any]) -> Entity:
    attributes = {k: v for k, v in raw.items() if k not in ("id", "name")}
    return Entity(id=int(raw["id"]), name=str(raw["name"]), attributes=attributes)
