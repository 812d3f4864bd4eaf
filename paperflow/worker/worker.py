import asyncio

from paperflow.config.settings import Settings
from paperflow.database.repositories.worker_state_repository import WorkerStateRepository
from paperflow.events.models import EventType, ProcessingEvent
from paperflow.events.reporter import EventReporter
from paperflow.logging.logger import Log
from paperflow.processor.executor import WorkflowExecutor
from paperflow.retry.backoff_queue import BackoffQueue
from paperflow.store.base import BaseDocumentStore
from paperflow.store.exceptions import StoreError, StoreNotFoundError
from paperflow.store.models import StoreDocument
from paperflow.worker.models import ScanResult
from paperflow.workflows.models import Workflow
from paperflow.workflows.registry import WorkflowRegistry, match_workflow


class Worker:
    """Scan loop: wait -> claim cycle lock -> discover -> execute -> retry ready."""

    def __init__(
        self,
        *,
        registry: WorkflowRegistry,
        store: BaseDocumentStore,
        executor: WorkflowExecutor,
        backoff_queue: BackoffQueue,
        state: WorkerStateRepository,
        reporter: EventReporter,
        settings: Settings,
    ) -> None:
        self._registry = registry
        self._store = store
        self._executor = executor
        self._queue = backoff_queue
        self._state = state
        self._reporter = reporter
        self._settings = settings
        self._shutdown = asyncio.Event()
        self._holding_lock = False

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    def request_shutdown(self) -> None:
        """Stop after the in-flight cycle. Safe to call from a signal handler."""
        if not self._shutdown.is_set():
            Log.info("Shutdown requested, finishing current cycle")
        self._shutdown.set()

    async def run(self, max_cycles: int | None = None) -> None:
        """Main loop. Runs until shutdown is requested.

        If max_cycles is set, stop after that many completed cycles (for testing).
        """
        Log.info(f"Worker started, scanning every {self._settings.scan_interval_seconds}s")
        cycles = 0
        pause_logged = False
        while not self._shutdown.is_set():
            try:
                state = await self._state.get_state()
                if state.is_paused:
                    if not pause_logged:
                        reason = f": {state.pause_reason}" if state.pause_reason else ""
                        Log.info(f"Worker paused{reason}")
                        pause_logged = True
                    await self._sleep(self._settings.pause_poll_interval_seconds)
                    continue
                if pause_logged:
                    Log.info("Worker resumed")
                    pause_logged = False

                await self._run_locked_cycle()
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                await self._wait_for_next_cycle()
            except Exception:
                Log.exception("Unexpected worker loop error")
                await self._sleep(self._settings.error_backoff_seconds)
        Log.info("Worker stopped")

    async def run_cycle(self) -> ScanResult:
        """Process new documents for every workflow, then ready retries."""
        result = ScanResult()
        try:
            await self._queue.log_stats()
            workflows = await self._registry.active_workflows()
        except Exception as exc:
            Log.error(f"Could not load workflows, skipping cycle: {exc}")
            result.error = str(exc)
            return result

        for workflow in workflows:
            try:
                documents = await self._discover(workflow)
            except Exception as exc:
                Log.error(f"Could not list documents for workflow '{workflow.name}': {exc}")
                result.error = str(exc)
                return result
            for document in documents:
                if not await self._keep_lock(result):
                    return result
                await self._process_new(document, workflow, workflows, result)

        try:
            ready = await self._queue.get_ready_for_retry()
        except Exception as exc:
            Log.error(f"Could not read the backoff queue: {exc}")
            result.error = str(exc)
            return result
        for entry in ready:
            if not await self._keep_lock(result):
                return result
            await self._process_retry(entry.document_id, workflows, result)

        Log.info(
            f"Cycle complete: {result.documents_found} found, "
            f"{result.documents_processed} processed, {result.documents_skipped} skipped, "
            f"{result.documents_failed} failed, {result.retries_processed} retries"
        )
        return result

    async def _discover(self, workflow: Workflow) -> list[StoreDocument]:
        trigger_id = await self._store.resolve_label(workflow.trigger_label)
        if trigger_id is None:
            Log.debug(f"Label '{workflow.trigger_label}' does not exist yet")
            return []
        excluded: list[int] = []
        for name in (workflow.processed_label, workflow.failed_label, workflow.skipped_label):
            if name:
                label_id = await self._store.resolve_label(name)
                if label_id is not None:
                    excluded.append(label_id)
        return await self._store.list_documents(
            include_label_ids=[trigger_id], exclude_label_ids=excluded
        )

    async def _process_new(
        self,
        document: StoreDocument,
        workflow: Workflow,
        workflows: list[Workflow],
        result: ScanResult,
    ) -> None:
        try:
            if await self._queue.has(document.id):
                return
            names = await self._store.label_names(document.labels)
        except Exception as exc:
            Log.warning(f"[doc:{document.id}] could not inspect document: {exc}")
            return
        if match_workflow(workflows, names) not in (None, workflow):
            # another workflow wins on label order
            return

        result.documents_found += 1
        await self._reporter.report(
            ProcessingEvent(
                type=EventType.DETECTED,
                document_id=document.id,
                progress=0,
                file_name=document.original_file_name,
                workflow_id=workflow.id,
                workflow_name=workflow.name,
            )
        )
        result.record(await self._executor.execute(document.id, workflow))

    async def _process_retry(
        self, document_id: int, workflows: list[Workflow], result: ScanResult
    ) -> None:
        try:
            document = await self._store.get_document(document_id)
            names = await self._store.label_names(document.labels)
        except StoreNotFoundError:
            Log.warning(f"[doc:{document_id}] no longer exists, dropping from retry queue")
            await self._queue.remove(document_id)
            return
        except StoreError as exc:
            Log.warning(f"[doc:{document_id}] could not fetch for retry: {exc}")
            return

        workflow = match_workflow(workflows, names)
        if workflow is None:
            Log.info(f"[doc:{document_id}] no workflow matches any more, dropping from retry queue")
            await self._queue.remove(document_id)
            return

        result.retries_processed += 1
        result.record(await self._executor.execute(document_id, workflow))

    async def _run_locked_cycle(self) -> ScanResult | None:
        if not await self._state.try_acquire_run(self._settings.run_lock_stale_seconds):
            Log.info("Another process is running a cycle, skipping")
            return None
        self._holding_lock = True
        result: ScanResult | None = None
        try:
            # a scan request is only consumed by a cycle that holds the lock
            if await self._state.consume_scan_request():
                Log.info("Manual scan requested")
            result = await self.run_cycle()
        finally:
            self._holding_lock = False
            await self._state.release_run(result.to_dict() if result is not None else None)
        return result

    async def _keep_lock(self, result: ScanResult) -> bool:
        """Refresh the cycle lock heartbeat. False once another process owns it."""
        if not self._holding_lock:
            return True
        try:
            held = await self._state.heartbeat_run()
        except Exception as exc:
            Log.warning(f"Could not refresh the run lock heartbeat: {exc}")
            return True
        if not held:
            Log.error("Run lock was taken over by another process, stopping cycle")
            result.error = "run lock lost"
        return held

    async def _wait_for_next_cycle(self) -> None:
        remaining = float(self._settings.scan_interval_seconds)
        step = max(float(self._settings.scan_request_poll_interval_seconds), 0.01)
        while remaining > 0 and not self._shutdown.is_set():
            await self._sleep(min(step, remaining))
            remaining -= step
            if (await self._state.get_state()).scan_requested:
                return

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early on shutdown."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except TimeoutError:
            pass
