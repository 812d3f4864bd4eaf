from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

TERMINAL_STATUSES = frozenset({"completed", "failed"})


@dataclass
class BackoffEntry:
    """Represents a row from the backoff_queue table."""

    document_id: int
    attempts: int
    last_error: str
    next_retry_at: datetime
    id: int | None = None


@dataclass
class ProcessingRecord:
    """Represents a row from the processing_records table."""

    id: int
    document_id: int
    status: str
    progress: int = 0
    attempts: int = 1
    message: str | None = None
    file_name: str | None = None
    workflow_id: int | None = None
    workflow_name: str | None = None
    extracted_payload: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class SkippedEntry:
    """Represents a row from the skipped_documents table."""

    document_id: int
    reason: str
    file_name: str | None = None
    skipped_at: datetime | None = None


@dataclass
class WorkerState:
    """The single worker_state row shared by the worker and API processes."""

    is_paused: bool = False
    paused_at: datetime | None = None
    pause_reason: str | None = None
    scan_requested: bool = False
    scan_requested_at: datetime | None = None
    scan_consumed_at: datetime | None = None
    is_running: bool = False
    run_owner: str | None = None
    run_started_at: datetime | None = None
    run_heartbeat_at: datetime | None = None
    last_scan_result: dict[str, Any] = field(default_factory=dict)
    last_scan_completed_at: datetime | None = None
