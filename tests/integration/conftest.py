import os
from collections.abc import AsyncGenerator

import psycopg
import pytest
import pytest_asyncio

from paperflow.config.settings import Settings
from paperflow.database.connection import (
    build_conninfo,
    close_pool,
    get_connection,
    init_pool,
    init_schema,
)

_TABLES = ("backoff_queue", "processing_records", "skipped_documents", "workflows")


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "paperflow_test")
    return Settings(_env_file=None)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def database_available(test_settings: Settings) -> None:
    try:
        psycopg.connect(build_conninfo(test_settings), connect_timeout=3).close()
    except psycopg.Error as e:
        pytest.skip(
            f"PostgreSQL test DB not available: {e}. "
            "Set DB_* env to point at a disposable database"
        )


@pytest_asyncio.fixture
async def integration_pool(
    database_available: None, test_settings: Settings
) -> AsyncGenerator[None, None]:
    """Pool with a fresh schema; every table is emptied before the test."""
    await init_pool(test_settings)
    try:
        await init_schema()
        async with get_connection() as conn:
            await conn.execute(f"TRUNCATE {', '.join(_TABLES)} RESTART IDENTITY")
            await conn.execute(
                """
                UPDATE worker_state
                SET is_paused = FALSE, paused_at = NULL, pause_reason = NULL,
                    scan_requested = FALSE, scan_requested_at = NULL, scan_consumed_at = NULL,
                    is_running = FALSE, run_owner = NULL, run_started_at = NULL,
                    run_heartbeat_at = NULL,
                    last_scan_result = NULL, last_scan_completed_at = NULL
                """
            )
            await conn.commit()
        yield
    finally:
        await close_pool()
