from collections.abc import Callable
from typing import Any

from psycopg.rows import dict_row

from paperflow.database.connection import get_connection
from paperflow.database.models import BackoffEntry

_COLUMNS = "id, document_id, attempts, last_error, next_retry_at"


def _to_entry(row: dict[str, Any]) -> BackoffEntry:
    return BackoffEntry(
        id=row["id"],
        document_id=row["document_id"],
        attempts=row["attempts"],
        last_error=row["last_error"],
        next_retry_at=row["next_retry_at"],
    )


class BackoffRepository:
    """Database operations for the backoff_queue table."""

    async def record_failure(
        self,
        document_id: int,
        error: str,
        delay_seconds: Callable[[int], float],
    ) -> BackoffEntry:
        """Insert or bump the entry for a document and schedule its next retry.

        The upsert and the reschedule run in one transaction, so concurrent
        writers for the same document serialize on the row lock.
        """
        async with get_connection() as conn:
            async with conn.transaction():
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        """
                        INSERT INTO backoff_queue (document_id, attempts, last_error, next_retry_at)
                        VALUES (%s, 1, %s, NOW())
                        ON CONFLICT (document_id) DO UPDATE
                        SET attempts = backoff_queue.attempts + 1,
                            last_error = EXCLUDED.last_error
                        RETURNING attempts
                        """,
                        (document_id, error),
                    )
                    row = await cur.fetchone()
                    assert row is not None
                    await cur.execute(
                        f"""
                        UPDATE backoff_queue
                        SET next_retry_at = NOW() + make_interval(secs => %s)
                        WHERE document_id = %s
                        RETURNING {_COLUMNS}
                        """,
                        (float(delay_seconds(row["attempts"])), document_id),
                    )
                    updated = await cur.fetchone()
        assert updated is not None
        return _to_entry(updated)

    async def find(self, document_id: int) -> BackoffEntry | None:
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"SELECT {_COLUMNS} FROM backoff_queue WHERE document_id = %s",
                    (document_id,),
                )
                row = await cur.fetchone()
        return _to_entry(row) if row is not None else None

    async def list_ready(self) -> list[BackoffEntry]:
        """Entries whose next_retry_at has passed, oldest schedule first."""
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM backoff_queue
                    WHERE next_retry_at <= NOW()
                    ORDER BY next_retry_at, id
                    """
                )
                rows = await cur.fetchall()
        return [_to_entry(row) for row in rows]

    async def list_all(self) -> list[BackoffEntry]:
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"SELECT {_COLUMNS} FROM backoff_queue ORDER BY next_retry_at, id"
                )
                rows = await cur.fetchall()
        return [_to_entry(row) for row in rows]

    async def count(self) -> int:
        async with get_connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT COUNT(*) FROM backoff_queue")
                row = await cur.fetchone()
        return int(row[0]) if row is not None else 0

    async def delete(self, document_id: int) -> None:
        async with get_connection() as conn:
            await conn.execute(
                "DELETE FROM backoff_queue WHERE document_id = %s",
                (document_id,),
            )
            await conn.commit()

    async def reset_all(self) -> int:
        """Zero every entry's attempts and make it due now. Returns rows touched."""
        async with get_connection() as conn:
            cur = await conn.execute(
                "UPDATE backoff_queue SET attempts = 0, next_retry_at = NOW()"
            )
            touched = cur.rowcount
            await conn.commit()
        return touched

    async def delete_all(self) -> int:
        async with get_connection() as conn:
            cur = await conn.execute("DELETE FROM backoff_queue")
            deleted = cur.rowcount
            await conn.commit()
        return deleted
