import asyncio
import signal
from dataclasses import dataclass

from paperflow.config.settings import Settings
from paperflow.database.connection import close_pool, init_pool, init_schema
from paperflow.database.repositories.backoff_repository import BackoffRepository
from paperflow.database.repositories.processing_repository import ProcessingRecordsRepository
from paperflow.database.repositories.skipped_repository import SkippedDocumentsRepository
from paperflow.database.repositories.worker_state_repository import WorkerStateRepository
from paperflow.database.repositories.workflow_repository import WorkflowRepository
from paperflow.events.reporter import EventReporter
from paperflow.extraction.factory import ExtractorFactory
from paperflow.logging.logger import Log
from paperflow.pdf.factory import PdfRasterizerFactory
from paperflow.processor.executor import WorkflowExecutor
from paperflow.retry.backoff_queue import BackoffQueue
from paperflow.store.paperless_client import PaperlessClient
from paperflow.worker.control import ControlSurface
from paperflow.worker.worker import Worker
from paperflow.workflows.registry import WorkflowRegistry


@dataclass
class Services:
    """Everything the worker and the control surface share."""

    store: PaperlessClient
    registry: WorkflowRegistry
    reporter: EventReporter
    executor: WorkflowExecutor
    worker: Worker
    control: ControlSurface

    async def close(self) -> None:
        await self.store.close()
        await self.reporter.close()
        await self.executor.close()


def build_services(settings: Settings) -> Services:
    """Wire repositories, clients and the executor from settings."""
    store = PaperlessClient.from_settings(settings)
    backoff_queue = BackoffQueue(BackoffRepository(), settings.max_retries)
    records = ProcessingRecordsRepository()
    skipped = SkippedDocumentsRepository()
    state = WorkerStateRepository()
    registry = WorkflowRegistry(WorkflowRepository(), settings)
    reporter = EventReporter.from_settings(settings, records)
    executor = WorkflowExecutor(
        store=store,
        extractor=ExtractorFactory.create(settings),
        backoff_queue=backoff_queue,
        records=records,
        skipped=skipped,
        reporter=reporter,
        rasterizer=PdfRasterizerFactory.create(settings),
        settings=settings,
    )
    worker = Worker(
        registry=registry,
        store=store,
        executor=executor,
        backoff_queue=backoff_queue,
        state=state,
        reporter=reporter,
        settings=settings,
    )
    control = ControlSurface(
        state=state,
        backoff_queue=backoff_queue,
        skipped=skipped,
        registry=registry,
        store=store,
        executor=executor,
    )
    return Services(store, registry, reporter, executor, worker, control)


async def run(settings: Settings) -> None:
    """Initialize storage, then run the scan loop until SIGTERM/SIGINT."""
    await init_pool(settings)
    services: Services | None = None
    try:
        await init_schema()
        services = build_services(settings)
        if settings.seed_default_workflows:
            await services.registry.seed_defaults()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, services.worker.request_shutdown)

        await services.worker.run()
    finally:
        if services is not None:
            await services.close()
        await close_pool()


def main() -> None:
    """Entry point: settings -> logging -> async worker loop."""
    settings = Settings()
    Log.configure(settings.log_level)
    Log.info(f"Starting paperflow worker ({settings.app_env})")
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
