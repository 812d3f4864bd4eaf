from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class EventType(str, Enum):
    DETECTED = "document:detected"
    PROCESSING = "document:processing"
    SUCCESS = "document:success"
    SKIPPED = "document:skipped"
    RETRY = "document:retry"
    FAILED = "document:failed"


# skipped documents are finished, they just had nothing to extract
EVENT_STATUS: dict[EventType, str] = {
    EventType.DETECTED: "detected",
    EventType.PROCESSING: "processing",
    EventType.SUCCESS: "completed",
    EventType.SKIPPED: "completed",
    EventType.RETRY: "retrying",
    EventType.FAILED: "failed",
}


@dataclass
class ProcessingEvent:
    """One lifecycle transition of a document."""

    type: EventType
    document_id: int
    progress: int | None = None
    message: str | None = None
    attempts: int | None = None
    file_name: str | None = None
    workflow_id: int | None = None
    workflow_name: str | None = None
    extracted_payload: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def status(self) -> str:
        return EVENT_STATUS[self.type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "payload": {
                "documentId": self.document_id,
                "status": self.status,
                "progress": self.progress,
                "message": self.message,
                "attempts": self.attempts,
                "fileName": self.file_name,
                "workflowId": self.workflow_id,
                "workflowName": self.workflow_name,
                "extractedPayload": self.extracted_payload,
                "timestamp": self.timestamp.isoformat(),
            },
        }
