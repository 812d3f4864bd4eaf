from psycopg.rows import dict_row

from paperflow.database.connection import get_connection
from paperflow.database.models import SkippedEntry


class SkippedDocumentsRepository:
    """Database operations for the skipped_documents table."""

    async def upsert(self, document_id: int, reason: str, file_name: str | None = None) -> None:
        """Mark a document as skipped, refreshing reason and timestamp if already marked."""
        async with get_connection() as conn:
            await conn.execute(
                """
                INSERT INTO skipped_documents (document_id, reason, file_name, skipped_at)
                VALUES (%s, %s, %s, NOW())
                ON CONFLICT (document_id) DO UPDATE
                SET reason = EXCLUDED.reason,
                    file_name = COALESCE(EXCLUDED.file_name, skipped_documents.file_name),
                    skipped_at = NOW()
                """,
                (document_id, reason, file_name),
            )
            await conn.commit()

    async def remove(self, document_id: int) -> None:
        async with get_connection() as conn:
            await conn.execute(
                "DELETE FROM skipped_documents WHERE document_id = %s",
                (document_id,),
            )
            await conn.commit()

    async def find(self, document_id: int) -> SkippedEntry | None:
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT document_id, reason, file_name, skipped_at
                    FROM skipped_documents
                    WHERE document_id = %s
                    """,
                    (document_id,),
                )
                row = await cur.fetchone()
        if row is None:
            return None
        return SkippedEntry(**row)

    async def list_all(self) -> list[SkippedEntry]:
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT document_id, reason, file_name, skipped_at
                    FROM skipped_documents
                    ORDER BY skipped_at DESC
                    """
                )
                rows = await cur.fetchall()
        return [SkippedEntry(**row) for row in rows]

    async def count(self) -> int:
        async with get_connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT COUNT(*) FROM skipped_documents")
                row = await cur.fetchone()
        return int(row[0]) if row is not None else 0

    async def clear(self) -> int:
        async with get_connection() as conn:
            cur = await conn.execute("DELETE FROM skipped_documents")
            deleted = cur.rowcount
            await conn.commit()
        return deleted
