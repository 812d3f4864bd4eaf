from typing import Any

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from paperflow.database.connection import get_connection
from paperflow.database.models import TERMINAL_STATUSES, ProcessingRecord

_COLUMNS = """
    id, document_id, status, message, progress, attempts, file_name,
    workflow_id, workflow_name, extracted_payload, created_at, updated_at
"""


def _to_record(row: dict[str, Any]) -> ProcessingRecord:
    return ProcessingRecord(**row)


class ProcessingRecordsRepository:
    """Database operations for the processing_records table."""

    async def find_latest(self, document_id: int) -> ProcessingRecord | None:
        """Return the current (most recent) record for a document."""
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM processing_records
                    WHERE document_id = %s
                    ORDER BY id DESC
                    LIMIT 1
                    """,
                    (document_id,),
                )
                row = await cur.fetchone()
        return _to_record(row) if row is not None else None

    async def record_status(
        self,
        document_id: int,
        status: str,
        *,
        progress: int | None = None,
        attempts: int | None = None,
        message: str | None = None,
        file_name: str | None = None,
        workflow_id: int | None = None,
        workflow_name: str | None = None,
        extracted_payload: dict[str, Any] | None = None,
    ) -> ProcessingRecord:
        """Apply a lifecycle transition to the document's current record.

        A non-terminal current record is updated in place and keeps any field
        the transition leaves unset. Once a record is terminal the next
        transition starts a fresh record.
        """
        payload = Jsonb(extracted_payload) if extracted_payload is not None else None
        async with get_connection() as conn:
            async with conn.transaction():
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        """
                        SELECT id, status
                        FROM processing_records
                        WHERE document_id = %s
                        ORDER BY id DESC
                        LIMIT 1
                        FOR UPDATE
                        """,
                        (document_id,),
                    )
                    current = await cur.fetchone()
                    if current is not None and current["status"] not in TERMINAL_STATUSES:
                        await cur.execute(
                            f"""
                            UPDATE processing_records
                            SET status = %s,
                                progress = COALESCE(%s, progress),
                                attempts = COALESCE(%s, attempts),
                                message = COALESCE(%s, message),
                                file_name = COALESCE(%s, file_name),
                                workflow_id = COALESCE(%s, workflow_id),
                                workflow_name = COALESCE(%s, workflow_name),
                                extracted_payload = COALESCE(%s, extracted_payload),
                                updated_at = NOW()
                            WHERE id = %s
                            RETURNING {_COLUMNS}
                            """,
                            (
                                status,
                                progress,
                                attempts,
                                message,
                                file_name,
                                workflow_id,
                                workflow_name,
                                payload,
                                current["id"],
                            ),
                        )
                    else:
                        await cur.execute(
                            f"""
                            INSERT INTO processing_records
                                (document_id, status, progress, attempts, message, file_name,
                                 workflow_id, workflow_name, extracted_payload)
                            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                            RETURNING {_COLUMNS}
                            """,
                            (
                                document_id,
                                status,
                                progress if progress is not None else 0,
                                attempts if attempts is not None else 1,
                                message,
                                file_name,
                                workflow_id,
                                workflow_name,
                                payload,
                            ),
                        )
                    row = await cur.fetchone()
        assert row is not None
        return _to_record(row)

    async def list_recent(self, limit: int = 50) -> list[ProcessingRecord]:
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM processing_records
                    ORDER BY updated_at DESC
                    LIMIT %s
                    """,
                    (limit,),
                )
                rows = await cur.fetchall()
        return [_to_record(row) for row in rows]
