import asyncio
import json
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from paperflow.config.settings import Settings
from paperflow.database.models import (
    TERMINAL_STATUSES,
    BackoffEntry,
    ProcessingRecord,
    SkippedEntry,
    WorkerState,
)
from paperflow.events.models import ProcessingEvent
from paperflow.events.reporter import BaseEventSink, EventReporter
from paperflow.processor.executor import WorkflowExecutor
from paperflow.retry.backoff_queue import BackoffQueue
from paperflow.store.base import BaseDocumentStore
from paperflow.store.exceptions import StoreConflictError, StoreNotFoundError
from paperflow.store.models import DocumentUpdate, Entity, EntityKind, StoreDocument
from paperflow.workflows.builtin import RECEIPT_OUTPUT_MAPPING, RECEIPT_SCHEMA
from paperflow.workflows.models import Workflow

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakeBackoffRepository:
    def __init__(self) -> None:
        self.entries: dict[int, BackoffEntry] = {}
        self.now = datetime.now(UTC)

    async def record_failure(
        self, document_id: int, error: str, delay_seconds: Callable[[int], float]
    ) -> BackoffEntry:
        entry = self.entries.get(document_id)
        attempts = entry.attempts + 1 if entry is not None else 1
        updated = BackoffEntry(
            document_id=document_id,
            attempts=attempts,
            last_error=error,
            next_retry_at=self.now + timedelta(seconds=delay_seconds(attempts)),
        )
        self.entries[document_id] = updated
        return updated

    async def find(self, document_id: int) -> BackoffEntry | None:
        return self.entries.get(document_id)

    async def list_ready(self) -> list[BackoffEntry]:
        ready = [e for e in self.entries.values() if e.next_retry_at <= self.now]
        return sorted(ready, key=lambda e: e.next_retry_at)

    async def list_all(self) -> list[BackoffEntry]:
        return sorted(self.entries.values(), key=lambda e: e.next_retry_at)

    async def count(self) -> int:
        return len(self.entries)

    async def delete(self, document_id: int) -> None:
        self.entries.pop(document_id, None)

    async def reset_all(self) -> int:
        for document_id, entry in self.entries.items():
            self.entries[document_id] = replace(entry, attempts=0, next_retry_at=self.now)
        return len(self.entries)

    async def delete_all(self) -> int:
        count = len(self.entries)
        self.entries.clear()
        return count


class FakeProcessingRecords:
    def __init__(self) -> None:
        self.records: list[ProcessingRecord] = []

    async def find_latest(self, document_id: int) -> ProcessingRecord | None:
        matching = [r for r in self.records if r.document_id == document_id]
        return matching[-1] if matching else None

    async def record_status(self, document_id: int, status: str, **fields: Any) -> ProcessingRecord:
        current = await self.find_latest(document_id)
        if current is not None and current.status not in TERMINAL_STATUSES:
            current.status = status
            for name, value in fields.items():
                if value is not None:
                    setattr(current, name, value)
            return current
        record = ProcessingRecord(
            id=len(self.records) + 1,
            document_id=document_id,
            status=status,
            progress=fields.get("progress") or 0,
            attempts=fields.get("attempts") or 1,
            message=fields.get("message"),
            file_name=fields.get("file_name"),
            workflow_id=fields.get("workflow_id"),
            workflow_name=fields.get("workflow_name"),
            extracted_payload=fields.get("extracted_payload"),
        )
        self.records.append(record)
        return record


class FakeSkippedRepository:
    def __init__(self) -> None:
        self.entries: dict[int, SkippedEntry] = {}

    async def upsert(self, document_id: int, reason: str, file_name: str | None = None) -> None:
        previous = self.entries.get(document_id)
        if file_name is None and previous is not None:
            file_name = previous.file_name
        self.entries[document_id] = SkippedEntry(
            document_id, reason, file_name, datetime.now(UTC)
        )

    async def remove(self, document_id: int) -> None:
        self.entries.pop(document_id, None)

    async def find(self, document_id: int) -> SkippedEntry | None:
        return self.entries.get(document_id)

    async def list_all(self) -> list[SkippedEntry]:
        return list(self.entries.values())

    async def count(self) -> int:
        return len(self.entries)

    async def clear(self) -> int:
        count = len(self.entries)
        self.entries.clear()
        return count


class FakeWorkerState:
    def __init__(self) -> None:
        self.state = WorkerState()
        self.acquire_results: list[bool] = []
        self.heartbeat_results: list[bool] = []
        self.heartbeats = 0

    async def initialize(self) -> None:
        pass

    async def get_state(self) -> WorkerState:
        return replace(self.state, last_scan_result=dict(self.state.last_scan_result))

    async def is_paused(self) -> bool:
        return self.state.is_paused

    async def pause(self, reason: str | None = None) -> None:
        self.state.is_paused = True
        self.state.pause_reason = reason
        self.state.paused_at = datetime.now(UTC)

    async def resume(self) -> None:
        self.state.is_paused = False
        self.state.pause_reason = None
        self.state.paused_at = None

    async def request_scan(self) -> None:
        self.state.scan_requested = True
        self.state.scan_requested_at = datetime.now(UTC)

    async def consume_scan_request(self) -> bool:
        pending = self.state.scan_requested
        self.state.scan_requested = False
        if pending:
            self.state.scan_consumed_at = datetime.now(UTC)
        return pending

    async def try_acquire_run(self, stale_after_seconds: int) -> bool:
        if self.acquire_results:
            return self.acquire_results.pop(0)
        if self.state.is_running:
            return False
        self.state.is_running = True
        return True

    async def heartbeat_run(self) -> bool:
        self.heartbeats += 1
        if self.heartbeat_results:
            return self.heartbeat_results.pop(0)
        return True

    async def release_run(self, scan_result: dict[str, Any] | None = None) -> bool:
        self.state.is_running = False
        if scan_result is not None:
            self.state.last_scan_result = scan_result
            self.state.last_scan_completed_at = datetime.now(UTC)
        return True


class FakeWorkflowRepository:
    def __init__(self) -> None:
        self.rows: dict[int, Workflow] = {}

    async def list_all(self) -> list[Workflow]:
        return sorted(self.rows.values(), key=lambda w: (-w.priority, w.id))

    async def find_by_id(self, workflow_id: int) -> Workflow | None:
        return self.rows.get(workflow_id)

    async def find_by_slug(self, slug: str) -> Workflow | None:
        return next((w for w in self.rows.values() if w.slug == slug), None)

    async def count(self) -> int:
        return len(self.rows)

    async def insert(self, values: dict[str, Any]) -> Workflow:
        workflow_id = max(self.rows, default=0) + 1
        self.rows[workflow_id] = Workflow(id=workflow_id, **values)
        return self.rows[workflow_id]

    async def update(self, workflow_id: int, changes: dict[str, Any]) -> Workflow | None:
        unknown = set(changes) - set(Workflow.__dataclass_fields__) | ({"id", "slug"} & set(changes))
        if unknown:
            raise ValueError(f"Columns not updatable: {sorted(unknown)}")
        current = self.rows.get(workflow_id)
        if current is None:
            return None
        self.rows[workflow_id] = replace(current, **changes)
        return self.rows[workflow_id]

    async def delete(self, workflow_id: int) -> bool:
        return self.rows.pop(workflow_id, None) is not None


class FakeStore(BaseDocumentStore):
    """In-memory document store. Every call yields to the loop once."""

    def __init__(self) -> None:
        super().__init__(label_cache_ttl_seconds=30, field_cache_ttl_seconds=600)
        self.documents: dict[int, StoreDocument] = {}
        self.entities: dict[EntityKind, list[Entity]] = {kind: [] for kind in EntityKind}
        self.thumbnails: dict[int, bytes] = {}
        self.originals: dict[int, bytes] = {}
        self.updates: list[tuple[int, DocumentUpdate]] = []
        self.notes: list[tuple[int, str]] = []
        self.create_calls: list[tuple[EntityKind, str]] = []
        self.fail_notes = False
        self.fail_updates: Exception | None = None
        self.fail_listing: Exception | None = None

    def add_entity(self, kind: EntityKind, name: str) -> int:
        entity_id = sum(len(v) for v in self.entities.values()) + 1
        self.entities[kind].append(Entity(entity_id, name))
        return entity_id

    def label_id(self, name: str) -> int | None:
        return next(
            (e.id for e in self.entities[EntityKind.LABEL] if e.name.casefold() == name.casefold()),
            None,
        )

    def names(self, kind: EntityKind) -> list[str]:
        return [e.name for e in self.entities[kind]]

    async def list_documents(
        self,
        *,
        include_label_ids: list[int],
        exclude_label_ids: list[int] | None = None,
    ) -> list[StoreDocument]:
        await asyncio.sleep(0)
        if self.fail_listing is not None:
            raise self.fail_listing
        excluded = set(exclude_label_ids or [])
        return [
            replace(doc, labels=list(doc.labels))
            for doc in self.documents.values()
            if set(include_label_ids) <= set(doc.labels) and not excluded & set(doc.labels)
        ]

    async def get_document(self, document_id: int) -> StoreDocument:
        await asyncio.sleep(0)
        if document_id not in self.documents:
            raise StoreNotFoundError(f"document {document_id} not found", 404)
        doc = self.documents[document_id]
        return replace(doc, labels=list(doc.labels), custom_fields=list(doc.custom_fields))

    async def get_thumbnail(self, document_id: int) -> bytes:
        await asyncio.sleep(0)
        if document_id not in self.thumbnails:
            raise StoreNotFoundError(f"thumbnail {document_id} not found", 404)
        return self.thumbnails[document_id]

    async def get_original(self, document_id: int) -> bytes:
        await asyncio.sleep(0)
        if document_id not in self.originals:
            raise StoreNotFoundError(f"original {document_id} not found", 404)
        return self.originals[document_id]

    async def update_document(self, document_id: int, update: DocumentUpdate) -> None:
        await asyncio.sleep(0)
        if self.fail_updates is not None:
            raise self.fail_updates
        self.updates.append((document_id, update))
        doc = self.documents[document_id]
        if update.labels is not None:
            doc.labels = list(update.labels)
        if update.title is not None:
            doc.title = update.title
        if update.content is not None:
            doc.content = update.content
        if update.correspondent is not None:
            doc.correspondent = update.correspondent
        if update.created is not None:
            doc.created = update.created
        if update.custom_fields is not None:
            doc.custom_fields = list(update.custom_fields)

    async def add_note(self, document_id: int, note: str) -> None:
        await asyncio.sleep(0)
        if self.fail_notes:
            raise StoreNotFoundError("notes endpoint missing", 404)
        self.notes.append((document_id, note))

    async def list_entities(self, kind: EntityKind) -> list[Entity]:
        await asyncio.sleep(0)
        return list(self.entities[kind])

    async def find_entity(self, kind: EntityKind, name: str) -> Entity | None:
        await asyncio.sleep(0)
        return next(
            (e for e in self.entities[kind] if e.name.casefold() == name.casefold()), None
        )

    async def create_entity(
        self, kind: EntityKind, name: str, attributes: dict[str, Any] | None = None
    ) -> Entity:
        await asyncio.sleep(0)
        self.create_calls.append((kind, name))
        if any(e.name.casefold() == name.casefold() for e in self.entities[kind]):
            raise StoreConflictError(f"{kind.value} with this name already exists", 400)
        entity_id = self.add_entity(kind, name)
        return Entity(entity_id, name, dict(attributes or {}))


class RecordingSink(BaseEventSink):
    def __init__(self) -> None:
        self.events: list[ProcessingEvent] = []

    async def send(self, event: ProcessingEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event.type.value.split(":")[1] for event in self.events]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        max_retries=3,
        retry_strategy="partial",
        update_content=True,
        auto_tag=True,
        scan_interval_seconds=0,
        pause_poll_interval_seconds=0,
        scan_request_poll_interval_seconds=0,
        error_backoff_seconds=0,
    )


@pytest.fixture
def backoff_repo() -> FakeBackoffRepository:
    return FakeBackoffRepository()


@pytest.fixture
def backoff_queue(backoff_repo: FakeBackoffRepository) -> BackoffQueue:
    return BackoffQueue(backoff_repo, max_retries=3)  # type: ignore[arg-type]


@pytest.fixture
def records() -> FakeProcessingRecords:
    return FakeProcessingRecords()


@pytest.fixture
def skipped_repo() -> FakeSkippedRepository:
    return FakeSkippedRepository()


@pytest.fixture
def worker_state() -> FakeWorkerState:
    return FakeWorkerState()


@pytest.fixture
def workflow_repo() -> FakeWorkflowRepository:
    return FakeWorkflowRepository()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def reporter(records: FakeProcessingRecords, sink: RecordingSink) -> EventReporter:
    return EventReporter(records, sink)  # type: ignore[arg-type]


@pytest.fixture
def receipt_payload() -> dict[str, Any]:
    return {
        "date": "2024-03-01",
        "vendor": "Acme",
        "category": "office",
        "paymentMethod": "card",
        "taxAmount": 3.5,
        "amount": 42.5,
        "currency": "USD",
    }


@pytest.fixture
def make_workflow() -> Callable[..., Workflow]:
    def _make(**overrides: Any) -> Workflow:
        values: dict[str, Any] = {
            "id": 1,
            "name": "Receipt",
            "slug": "receipt",
            "trigger_label": "receipt",
            "schema_source": json.dumps(RECEIPT_SCHEMA),
            "json_schema": RECEIPT_SCHEMA,
            "processed_label": "receipt-processed",
            "failed_label": "receipt-failed",
            "skipped_label": "receipt-skipped",
            "priority": 100,
            "title_template": "{vendor} - {amount} {currency}",
            "output_mapping": RECEIPT_OUTPUT_MAPPING,
        }
        values.update(overrides)
        return Workflow(**values)

    return _make


@pytest.fixture
def extractor() -> MagicMock:
    mock = MagicMock()
    mock.extract = AsyncMock(return_value=[])
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def rasterizer() -> MagicMock:
    mock = MagicMock()
    mock.rasterize.return_value = PNG_BYTES
    return mock


@pytest.fixture
def executor(
    store: FakeStore,
    extractor: MagicMock,
    backoff_queue: BackoffQueue,
    records: FakeProcessingRecords,
    skipped_repo: FakeSkippedRepository,
    reporter: EventReporter,
    rasterizer: MagicMock,
    settings: Settings,
) -> WorkflowExecutor:
    return WorkflowExecutor(
        store=store,
        extractor=extractor,
        backoff_queue=backoff_queue,
        records=records,  # type: ignore[arg-type]
        skipped=skipped_repo,  # type: ignore[arg-type]
        reporter=reporter,
        rasterizer=rasterizer,
        settings=settings,
    )


@pytest.fixture
def receipt_document(store: FakeStore) -> StoreDocument:
    """Document 7 carrying the receipt label, with a PNG thumbnail."""
    label_id = store.add_entity(EntityKind.LABEL, "receipt")
    document = StoreDocument(
        id=7,
        title="scan_0007.pdf",
        labels=[label_id],
        content="ACME STORE\nTOTAL 42.50",
        original_file_name="scan_0007.pdf",
    )
    store.documents[7] = document
    store.thumbnails[7] = PNG_BYTES
    return document


@pytest.fixture
def env(
    store: FakeStore,
    extractor: MagicMock,
    backoff_queue: BackoffQueue,
    backoff_repo: FakeBackoffRepository,
    records: FakeProcessingRecords,
    skipped_repo: FakeSkippedRepository,
    sink: RecordingSink,
    rasterizer: MagicMock,
    executor: WorkflowExecutor,
    settings: Settings,
) -> SimpleNamespace:
    """All collaborators of the executor in one place."""
    return SimpleNamespace(
        store=store,
        extractor=extractor,
        queue=backoff_queue,
        backoff_repo=backoff_repo,
        records=records,
        skipped=skipped_repo,
        sink=sink,
        rasterizer=rasterizer,
        executor=executor,
        settings=settings,
    )
