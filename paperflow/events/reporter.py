"""Lifecycle event delivery: persisted processing records plus a sink."""

from abc import ABC, abstractmethod

import httpx

from paperflow.config.settings import Settings
from paperflow.database.repositories.processing_repository import ProcessingRecordsRepository
from paperflow.events.models import EventType, ProcessingEvent
from paperflow.logging.logger import Log


class BaseEventSink(ABC):
    """Destination for lifecycle events beyond the processing records table."""

    @abstractmethod
    async def send(self, event: ProcessingEvent) -> None: ...

    async def close(self) -> None:
        """Release resources held by the sink."""


class LogEventSink(BaseEventSink):
    """Writes each event as a log line."""

    async def send(self, event: ProcessingEvent) -> None:
        line = f"[doc:{event.document_id}] {event.type.value} ({event.status})"
        if event.message:
            line = f"{line}: {event.message}"
        if event.type is EventType.FAILED:
            Log.error(line)
        else:
            Log.debug(line)


class HttpEventSink(BaseEventSink):
    """Posts each event as JSON to a webhook."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._client = httpx.AsyncClient(timeout=timeout_seconds, transport=transport)

    async def send(self, event: ProcessingEvent) -> None:
        response = await self._client.post(self._url, json=event.to_dict())
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()


class EventReporter:
    """Fire-and-forget event reporting. ``report`` never raises."""

    def __init__(
        self,
        records: ProcessingRecordsRepository,
        sink: BaseEventSink | None = None,
    ) -> None:
        self._records = records
        self._sink = sink or LogEventSink()

    @classmethod
    def from_settings(
        cls, settings: Settings, records: ProcessingRecordsRepository
    ) -> "EventReporter":
        if settings.event_webhook_url:
            sink: BaseEventSink = HttpEventSink(
                settings.event_webhook_url, settings.event_timeout_seconds
            )
        else:
            sink = LogEventSink()
        return cls(records, sink)

    async def report(self, event: ProcessingEvent) -> None:
        try:
            await self._records.record_status(
                event.document_id,
                event.status,
                progress=event.progress,
                attempts=event.attempts,
                message=event.message,
                file_name=event.file_name,
                workflow_id=event.workflow_id,
                workflow_name=event.workflow_name,
                extracted_payload=event.extracted_payload,
            )
        except Exception as exc:
            Log.warning(f"[doc:{event.document_id}] could not persist {event.type.value}: {exc}")

        try:
            await self._sink.send(event)
        except Exception as exc:
            Log.warning(f"[doc:{event.document_id}] could not deliver {event.type.value}: {exc}")

    async def close(self) -> None:
        await self._sink.close()
