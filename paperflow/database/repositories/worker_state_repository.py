import os
import socket
from typing import Any
from uuid import uuid4

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from paperflow.database.connection import get_connection
from paperflow.database.models import WorkerState
from paperflow.logging.logger import Log

_STATE_ID = 1


class WorkerStateRepository:
    """Database operations for the single-row worker_state table.

    The row is the only channel between the scan loop and the control
    surface, which usually live in different processes.
    """

    def __init__(self, owner: str | None = None) -> None:
        self._owner = owner or f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"

    @property
    def owner(self) -> str:
        """Token identifying this process as holder of the cycle lock."""
        return self._owner

    async def initialize(self) -> None:
        """Ensure the state row exists."""
        async with get_connection() as conn:
            await conn.execute(
                "INSERT INTO worker_state (id) VALUES (%s) ON CONFLICT (id) DO NOTHING",
                (_STATE_ID,),
            )
            await conn.commit()

    async def get_state(self) -> WorkerState:
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT is_paused, paused_at, pause_reason, scan_requested,
                           scan_requested_at, scan_consumed_at, is_running, run_owner,
                           run_started_at, run_heartbeat_at,
                           last_scan_result, last_scan_completed_at
                    FROM worker_state
                    WHERE id = %s
                    """,
                    (_STATE_ID,),
                )
                row = await cur.fetchone()
        if row is None:
            return WorkerState()
        row["last_scan_result"] = row["last_scan_result"] or {}
        return WorkerState(**row)

    async def is_paused(self) -> bool:
        return (await self.get_state()).is_paused

    async def pause(self, reason: str | None = None) -> None:
        async with get_connection() as conn:
            await conn.execute(
                """
                UPDATE worker_state
                SET is_paused = TRUE, paused_at = NOW(), pause_reason = %s, updated_at = NOW()
                WHERE id = %s
                """,
                (reason, _STATE_ID),
            )
            await conn.commit()

    async def resume(self) -> None:
        async with get_connection() as conn:
            await conn.execute(
                """
                UPDATE worker_state
                SET is_paused = FALSE, paused_at = NULL, pause_reason = NULL, updated_at = NOW()
                WHERE id = %s
                """,
                (_STATE_ID,),
            )
            await conn.commit()

    async def request_scan(self) -> None:
        async with get_connection() as conn:
            await conn.execute(
                """
                UPDATE worker_state
                SET scan_requested = TRUE, scan_requested_at = NOW(), updated_at = NOW()
                WHERE id = %s
                """,
                (_STATE_ID,),
            )
            await conn.commit()

    async def consume_scan_request(self) -> bool:
        """Clear a pending scan request. True if one was pending."""
        async with get_connection() as conn:
            cur = await conn.execute(
                """
                UPDATE worker_state
                SET scan_requested = FALSE, scan_consumed_at = NOW(), updated_at = NOW()
                WHERE id = %s AND scan_requested
                """,
                (_STATE_ID,),
            )
            consumed = cur.rowcount == 1
            await conn.commit()
        return consumed

    async def try_acquire_run(self, stale_after_seconds: int) -> bool:
        """Claim the cross-process cycle lock for this repository's owner.

        A lock whose last heartbeat is older than ``stale_after_seconds`` is
        treated as left behind by a crashed process and may be taken over.
        """
        async with get_connection() as conn:
            cur = await conn.execute(
                """
                UPDATE worker_state
                SET is_running = TRUE, run_owner = %s, run_started_at = NOW(),
                    run_heartbeat_at = NOW(), updated_at = NOW()
                WHERE id = %s
                  AND (NOT is_running
                       OR COALESCE(run_heartbeat_at, run_started_at)
                          < NOW() - make_interval(secs => %s))
                """,
                (self._owner, _STATE_ID, float(stale_after_seconds)),
            )
            acquired = cur.rowcount == 1
            await conn.commit()
        return acquired

    async def heartbeat_run(self) -> bool:
        """Refresh the heartbeat of a lock this owner holds.

        False when the lock has been taken over or released in the meantime.
        """
        async with get_connection() as conn:
            cur = await conn.execute(
                """
                UPDATE worker_state
                SET run_heartbeat_at = NOW(), updated_at = NOW()
                WHERE id = %s AND is_running AND run_owner = %s
                """,
                (_STATE_ID, self._owner),
            )
            held = cur.rowcount == 1
            await conn.commit()
        return held

    async def release_run(self, scan_result: dict[str, Any] | None = None) -> bool:
        """Drop the cycle lock, storing the scan summary when one is given.

        Only the owner that holds the lock can release it. Returns False when
        another process had already taken it over.
        """
        async with get_connection() as conn:
            if scan_result is None:
                cur = await conn.execute(
                    """
                    UPDATE worker_state
                    SET is_running = FALSE, run_owner = NULL, run_started_at = NULL,
                        run_heartbeat_at = NULL, updated_at = NOW()
                    WHERE id = %s AND run_owner = %s
                    """,
                    (_STATE_ID, self._owner),
                )
            else:
                cur = await conn.execute(
                    """
                    UPDATE worker_state
                    SET is_running = FALSE, run_owner = NULL, run_started_at = NULL,
                        run_heartbeat_at = NULL, last_scan_result = %s,
                        last_scan_completed_at = NOW(), updated_at = NOW()
                    WHERE id = %s AND run_owner = %s
                    """,
                    (Jsonb(scan_result), _STATE_ID, self._owner),
                )
            released = cur.rowcount == 1
            await conn.commit()
        if not released:
            Log.warning(f"Run lock was no longer held by {self._owner}, nothing released")
        return released
