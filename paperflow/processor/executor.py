"""Runs one document through extraction and output mapping for a workflow."""

import asyncio
import json
from typing import Any, Literal

from paperflow.config.settings import Settings
from paperflow.database.repositories.processing_repository import ProcessingRecordsRepository
from paperflow.database.repositories.skipped_repository import SkippedDocumentsRepository
from paperflow.events.models import EventType, ProcessingEvent
from paperflow.events.reporter import EventReporter
from paperflow.extraction.extractor import Extractor
from paperflow.extraction.mime import sniff_mime_type
from paperflow.logging.logger import DocumentLog, Log
from paperflow.pdf.base import BasePdfRasterizer
from paperflow.processor.exceptions import UnsupportedFileTypeError
from paperflow.processor.mapping import (
    build_note,
    field_values,
    format_value,
    interpolate_template,
    render_content,
)
from paperflow.processor.models import ExecutionOutcome
from paperflow.retry.backoff_queue import BackoffQueue
from paperflow.store.base import BaseDocumentStore
from paperflow.store.exceptions import StoreError
from paperflow.store.models import DocumentUpdate, StoreDocument
from paperflow.workflows.models import WILDCARD_FIELD, Workflow
from paperflow.workflows.schema import validate_items

RetryStrategy = Literal["partial", "full"]

SKIP_REASON = "no data"
# paperless renders thumbnails as webp
DEFAULT_THUMBNAIL_MIME = "image/webp"


class WorkflowExecutor:
    """Processes a single document end to end.

    Every failure is classified here: retryable failures go to the backoff
    queue, exhausted documents get the failure label. Nothing raised inside
    the pipeline escapes ``execute``.
    """

    def __init__(
        self,
        *,
        store: BaseDocumentStore,
        extractor: Extractor,
        backoff_queue: BackoffQueue,
        records: ProcessingRecordsRepository,
        skipped: SkippedDocumentsRepository,
        reporter: EventReporter,
        rasterizer: BasePdfRasterizer,
        settings: Settings,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._queue = backoff_queue
        self._records = records
        self._skipped = skipped
        self._reporter = reporter
        self._rasterizer = rasterizer
        self._settings = settings

    async def close(self) -> None:
        await self._extractor.close()

    async def execute(
        self,
        document_id: int,
        workflow: Workflow,
        strategy: RetryStrategy | None = None,
    ) -> ExecutionOutcome:
        log = Log.for_document(document_id)
        strategy = strategy or self._settings.retry_strategy
        try:
            attempt = await self._queue.get_attempts(document_id) + 1
            reused = await self._reusable_payload(document_id, strategy)
        except Exception as exc:
            log.error(f"Could not prepare execution: {exc}")
            return ExecutionOutcome.RETRY

        log.info(
            f"Starting workflow '{workflow.name}' "
            f"(attempt {attempt}/{self._queue.max_retries}, strategy={strategy})"
        )
        await self._report(EventType.PROCESSING, document_id, workflow, progress=5, attempts=attempt)

        try:
            document = await self._store.get_document(document_id)
            if reused is not None:
                log.info("Reusing previously extracted data")
                payload = reused
                await self._report(
                    EventType.PROCESSING,
                    document_id,
                    workflow,
                    progress=50,
                    message="Reusing existing data",
                )
            else:
                extracted = await self._extract(document, workflow, log)
                if extracted is None:
                    await self._skip(document, workflow, log)
                    return ExecutionOutcome.SKIPPED
                payload = extracted
                await self._report(
                    EventType.PROCESSING,
                    document_id,
                    workflow,
                    progress=60,
                    message="Extraction complete",
                    extracted_payload=payload,
                )

            update = await self._map_outputs(document, workflow, payload, log)
            await self._store.update_document(document_id, update)
            await self._add_note(document_id, workflow, payload, log)

            await self._report(
                EventType.SUCCESS,
                document_id,
                workflow,
                progress=100,
                message="Processed successfully",
                extracted_payload=payload,
                file_name=document.original_file_name,
            )
            await self._queue.remove(document_id)
            await self._skipped.remove(document_id)
            log.info(f"Workflow '{workflow.name}' completed")
            return ExecutionOutcome.SUCCESS
        except Exception as exc:
            return await self._handle_failure(document_id, workflow, exc, log)

    async def _reusable_payload(
        self, document_id: int, strategy: RetryStrategy
    ) -> dict[str, Any] | None:
        if strategy != "partial":
            return None
        record = await self._records.find_latest(document_id)
        if record is None or record.is_terminal or not record.extracted_payload:
            return None
        return record.extracted_payload

    async def _extract(
        self, document: StoreDocument, workflow: Workflow, log: DocumentLog
    ) -> dict[str, Any] | None:
        image, mime_type = await self._fetch_image(document.id, log)
        existing_labels = await self._store.label_names(document.labels)
        log.info(f"Sending {mime_type} image to extraction")
        items = await self._extractor.extract(
            image=image,
            mime_type=mime_type,
            json_schema=workflow.json_schema,
            prompt_instructions=workflow.prompt_instructions,
            existing_labels=existing_labels,
        )
        if not items:
            return None
        validate_items(workflow.json_schema, items)
        if len(items) > 1:
            log.info(f"{len(items)} items extracted, using the first")
        return items[0]

    async def _fetch_image(self, document_id: int, log: DocumentLog) -> tuple[bytes, str]:
        try:
            thumbnail = await self._store.get_thumbnail(document_id)
            return thumbnail, sniff_mime_type(thumbnail) or DEFAULT_THUMBNAIL_MIME
        except StoreError as exc:
            log.info(f"Thumbnail unavailable ({exc}), using original file")

        original = await self._store.get_original(document_id)
        mime_type = sniff_mime_type(original)
        if mime_type == "application/pdf":
            png = await asyncio.to_thread(self._rasterizer.rasterize, original)
            return png, "image/png"
        if mime_type is None:
            raise UnsupportedFileTypeError("Original file is neither an image nor a PDF")
        return original, mime_type

    async def _skip(self, document: StoreDocument, workflow: Workflow, log: DocumentLog) -> None:
        log.warning("No data extracted, marking as skipped")
        if workflow.skipped_label:
            label_id = await self._store.ensure_label(workflow.skipped_label)
            if label_id not in document.labels:
                await self._store.update_document(
                    document.id, DocumentUpdate(labels=[*document.labels, label_id])
                )
        await self._skipped.upsert(
            document.id, SKIP_REASON, document.original_file_name or document.title or None
        )
        await self._report(
            EventType.SKIPPED,
            document.id,
            workflow,
            progress=100,
            message="No data found",
            file_name=document.original_file_name,
        )
        await self._queue.remove(document.id)

    async def _map_outputs(
        self,
        document: StoreDocument,
        workflow: Workflow,
        payload: dict[str, Any],
        log: DocumentLog,
    ) -> DocumentUpdate:
        mapping = workflow.output_mapping
        update = DocumentUpdate()

        if workflow.title_template:
            update.title = interpolate_template(workflow.title_template, payload)
        elif payload.get("title"):
            update.title = format_value(payload["title"])

        if mapping.date_field and payload.get(mapping.date_field):
            update.created = format_value(payload[mapping.date_field])

        if mapping.correspondent_field and payload.get(mapping.correspondent_field):
            update.correspondent = await self._store.ensure_correspondent(
                format_value(payload[mapping.correspondent_field])
            )

        update.labels = await self._collect_labels(document, workflow, payload, log)

        if mapping.custom_fields:
            update.custom_fields = await self._collect_custom_fields(document, workflow, payload, log)

        if self._settings.update_content:
            update.content = render_content(payload, workflow.name, document.content)

        return update

    async def _collect_labels(
        self,
        document: StoreDocument,
        workflow: Workflow,
        payload: dict[str, Any],
        log: DocumentLog,
    ) -> list[int]:
        labels = list(document.labels)

        def add(label_id: int) -> None:
            if label_id not in labels:
                labels.append(label_id)

        add(await self._store.ensure_label(workflow.processed_label))
        for name in workflow.output_mapping.tags_to_apply:
            add(await self._store.ensure_label(name))
        for field_name in workflow.output_mapping.tag_fields:
            for name in field_values(payload.get(field_name)):
                add(await self._store.ensure_label(name))

        suggested = payload.get("suggested_tags")
        if self._settings.auto_tag and isinstance(suggested, list):
            for name in field_values(suggested):
                try:
                    add(await self._store.ensure_label(name))
                except Exception as exc:
                    log.warning(f"Could not apply suggested label '{name}': {exc}")
        return labels

    async def _collect_custom_fields(
        self,
        document: StoreDocument,
        workflow: Workflow,
        payload: dict[str, Any],
        log: DocumentLog,
    ) -> list[dict[str, Any]]:
        values: dict[int, Any] = {
            int(entry["field"]): entry.get("value")
            for entry in document.custom_fields
            if "field" in entry
        }
        for store_field, extracted_field in workflow.output_mapping.custom_fields.items():
            if extracted_field == WILDCARD_FIELD:
                value: str | None = json.dumps(payload, ensure_ascii=False)
            else:
                raw = payload.get(extracted_field)
                value = format_value(raw) if raw not in (None, "") else None
            if value is None:
                continue
            try:
                field_id = await self._store.ensure_custom_field(store_field)
            except Exception as exc:
                log.warning(f"Could not set custom field '{store_field}': {exc}")
                continue
            values[field_id] = value
        return [{"field": field_id, "value": value} for field_id, value in values.items()]

    async def _add_note(
        self,
        document_id: int,
        workflow: Workflow,
        payload: dict[str, Any],
        log: DocumentLog,
    ) -> None:
        try:
            await self._store.add_note(document_id, build_note(payload, workflow.name))
        except Exception as exc:
            log.warning(f"Could not add note: {exc}")

    async def _handle_failure(
        self,
        document_id: int,
        workflow: Workflow,
        exc: Exception,
        log: DocumentLog,
    ) -> ExecutionOutcome:
        message = str(exc) or type(exc).__name__
        log.error(f"Workflow '{workflow.name}' failed: {message}")
        try:
            attempts = await self._queue.add(document_id, message)
            if not await self._queue.should_give_up(document_id):
                await self._report(
                    EventType.RETRY,
                    document_id,
                    workflow,
                    progress=0,
                    message=message,
                    attempts=attempts,
                )
                return ExecutionOutcome.RETRY

            log.error(f"Giving up after {attempts} attempts")
            await self._report(
                EventType.FAILED,
                document_id,
                workflow,
                progress=100,
                message=message,
                attempts=attempts,
            )
            await self._apply_failure_label(document_id, workflow, log)
            await self._queue.remove(document_id)
            return ExecutionOutcome.FAILED
        except Exception:
            Log.exception(f"[doc:{document_id}] could not record failure")
            return ExecutionOutcome.RETRY

    async def _apply_failure_label(
        self, document_id: int, workflow: Workflow, log: DocumentLog
    ) -> None:
        if not workflow.failed_label:
            return
        try:
            label_id = await self._store.ensure_label(workflow.failed_label)
            document = await self._store.get_document(document_id)
            if label_id not in document.labels:
                await self._store.update_document(
                    document_id, DocumentUpdate(labels=[*document.labels, label_id])
                )
        except Exception as exc:
            log.warning(f"Could not apply failure label '{workflow.failed_label}': {exc}")

    async def _report(
        self,
        event_type: EventType,
        document_id: int,
        workflow: Workflow,
        **fields: Any,
    ) -> None:
        await self._reporter.report(
            ProcessingEvent(
                type=event_type,
                document_id=document_id,
                workflow_id=workflow.id,
                workflow_name=workflow.name,
                **fields,
            )
        )
