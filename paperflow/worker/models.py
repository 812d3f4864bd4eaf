from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from paperflow.processor.models import ExecutionOutcome


@dataclass
class ScanResult:
    """Summary of one scan cycle, stored in the worker state row."""

    documents_found: int = 0
    documents_processed: int = 0
    documents_skipped: int = 0
    documents_failed: int = 0
    retries_processed: int = 0
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def record(self, outcome: ExecutionOutcome) -> None:
        if outcome is ExecutionOutcome.SUCCESS:
            self.documents_processed += 1
        elif outcome is ExecutionOutcome.SKIPPED:
            self.documents_skipped += 1
        else:
            self.documents_failed += 1

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ScanResult":
        timestamp = raw.get("timestamp")
        return cls(
            documents_found=int(raw.get("documents_found", 0)),
            documents_processed=int(raw.get("documents_processed", 0)),
            documents_skipped=int(raw.get("documents_skipped", 0)),
            documents_failed=int(raw.get("documents_failed", 0)),
            retries_processed=int(raw.get("retries_processed", 0)),
            error=raw.get("error"),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(UTC),
        )


@dataclass
class TriggerScanResult:
    """Answer to a trigger-and-wait request."""

    consumed: bool
    duration: float
    scan_result: ScanResult | None
    message: str


@dataclass
class ControlStatus:
    """Worker state as reported to operators."""

    is_paused: bool
    paused_at: datetime | None
    pause_reason: str | None
    is_running: bool
    scan_requested: bool
    queue_size: int
    skipped_count: int
    last_scan_result: ScanResult | None
    last_scan_completed_at: datetime | None
