"""Operator controls over the worker, usable from any process."""

import asyncio
import time
from datetime import datetime

from paperflow.database.models import SkippedEntry, WorkerState
from paperflow.database.repositories.skipped_repository import SkippedDocumentsRepository
from paperflow.database.repositories.worker_state_repository import WorkerStateRepository
from paperflow.logging.logger import Log
from paperflow.processor.executor import RetryStrategy, WorkflowExecutor
from paperflow.processor.models import ExecutionOutcome
from paperflow.retry.backoff_queue import BackoffQueue
from paperflow.store.base import BaseDocumentStore
from paperflow.worker.models import ControlStatus, ScanResult, TriggerScanResult
from paperflow.workflows.exceptions import WorkflowNotFoundError
from paperflow.workflows.registry import WorkflowRegistry


class ControlSurface:
    """Pause, resume, trigger and retry operations backed by shared state.

    Talks to the scan loop only through the worker_state row and the backoff
    queue, so it works from a different process than the worker.
    """

    def __init__(
        self,
        *,
        state: WorkerStateRepository,
        backoff_queue: BackoffQueue,
        skipped: SkippedDocumentsRepository,
        registry: WorkflowRegistry,
        store: BaseDocumentStore,
        executor: WorkflowExecutor,
    ) -> None:
        self._state = state
        self._queue = backoff_queue
        self._skipped = skipped
        self._registry = registry
        self._store = store
        self._executor = executor

    async def pause(self, reason: str | None = None) -> ControlStatus:
        await self._state.pause(reason)
        Log.info(f"Worker pause requested{f': {reason}' if reason else ''}")
        return await self.get_state()

    async def resume(self) -> ControlStatus:
        await self._state.resume()
        Log.info("Worker resume requested")
        return await self.get_state()

    async def get_state(self) -> ControlStatus:
        state = await self._state.get_state()
        return ControlStatus(
            is_paused=state.is_paused,
            paused_at=state.paused_at,
            pause_reason=state.pause_reason,
            is_running=state.is_running,
            scan_requested=state.scan_requested,
            queue_size=await self._queue.size(),
            skipped_count=await self._skipped.count(),
            last_scan_result=(
                ScanResult.from_dict(state.last_scan_result) if state.last_scan_result else None
            ),
            last_scan_completed_at=state.last_scan_completed_at,
        )

    async def trigger_scan_and_wait(
        self,
        timeout: float = 30.0,
        min_wait: float = 1.0,
        poll_interval: float = 0.5,
    ) -> TriggerScanResult:
        """Ask the worker for an immediate scan and wait for its result.

        Returns once a cycle that picked up this request has completed and ``min_wait``
        has passed, or when ``timeout`` runs out. Never waits past the timeout.
        """
        started = time.monotonic()
        await self._state.request_scan()
        requested_at = (await self._state.get_state()).scan_requested_at
        Log.info("Scan triggered")

        while True:
            elapsed = time.monotonic() - started
            state = await self._state.get_state()
            consumed = _consumed_since(state, requested_at)
            completed = state.last_scan_completed_at
            # only a cycle that consumed this request counts, not one already running
            fresh = consumed and completed is not None and completed >= state.scan_consumed_at
            if fresh and (elapsed >= min_wait or elapsed >= timeout):
                return TriggerScanResult(
                    consumed=True,
                    duration=elapsed,
                    scan_result=ScanResult.from_dict(state.last_scan_result)
                    if state.last_scan_result
                    else None,
                    message="Scan completed",
                )
            if elapsed >= timeout:
                return TriggerScanResult(
                    consumed=consumed,
                    duration=elapsed,
                    scan_result=None,
                    message=(
                        "Scan picked up but not finished before the timeout"
                        if consumed
                        else "Scan triggered but not confirmed by the worker"
                    ),
                )
            await asyncio.sleep(max(0.0, min(poll_interval, timeout - elapsed)))

    async def retry_one(
        self, document_id: int, strategy: RetryStrategy = "partial"
    ) -> ExecutionOutcome:
        """Run one document now, outside the scan loop.

        Raises:
            StoreError: if the document cannot be fetched.
            WorkflowNotFoundError: if no workflow matches its labels.
        """
        document = await self._store.get_document(document_id)
        names = await self._store.label_names(document.labels)
        workflow = await self._registry.match(names)
        if workflow is None:
            raise WorkflowNotFoundError(f"No workflow matches document {document_id}")
        Log.info(f"[doc:{document_id}] manual retry with workflow '{workflow.name}' ({strategy})")
        return await self._executor.execute(document_id, workflow, strategy)

    async def retry_all(self) -> int:
        return await self._queue.retry_all()

    async def clear_queue(self) -> int:
        return await self._queue.clear()

    async def list_skipped(self) -> list[SkippedEntry]:
        return await self._skipped.list_all()

    async def clear_skipped(self) -> int:
        count = await self._skipped.clear()
        Log.info(f"Cleared {count} skipped documents")
        return count


def _consumed_since(state: WorkerState, requested_at: datetime | None) -> bool:
    """Whether a worker cycle has taken the scan request made at ``requested_at``."""
    if state.scan_requested or state.scan_consumed_at is None:
        return False
    return requested_at is None or state.scan_consumed_at >= requested_at
