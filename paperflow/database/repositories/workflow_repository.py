from typing import Any

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from paperflow.database.connection import get_connection
from paperflow.workflows.models import OutputMapping, Workflow

_COLUMNS = """
    id, name, slug, description, enabled, priority, trigger_label, schema_source,
    json_schema, prompt_instructions, title_template, output_mapping,
    processed_label, failed_label, skipped_label, is_built_in, created_at, updated_at
"""

_UPDATABLE = frozenset({
    "name",
    "description",
    "enabled",
    "priority",
    "trigger_label",
    "schema_source",
    "json_schema",
    "prompt_instructions",
    "title_template",
    "output_mapping",
    "processed_label",
    "failed_label",
    "skipped_label",
})

_JSON_COLUMNS = frozenset({"json_schema", "output_mapping"})


def _to_workflow(row: dict[str, Any]) -> Workflow:
    row = dict(row)
    row["output_mapping"] = OutputMapping.from_dict(row["output_mapping"])
    row["title_template"] = row["title_template"] or ""
    return Workflow(**row)


def _db_value(column: str, value: Any) -> Any:
    if column == "output_mapping" and isinstance(value, OutputMapping):
        return Jsonb(value.to_dict())
    if column in _JSON_COLUMNS:
        return Jsonb(value)
    return value


class WorkflowRepository:
    """Database operations for the workflows table."""

    async def list_all(self) -> list[Workflow]:
        """All workflows, highest priority first, oldest first among equals."""
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"SELECT {_COLUMNS} FROM workflows ORDER BY priority DESC, id"
                )
                rows = await cur.fetchall()
        return [_to_workflow(row) for row in rows]

    async def find_by_id(self, workflow_id: int) -> Workflow | None:
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"SELECT {_COLUMNS} FROM workflows WHERE id = %s",
                    (workflow_id,),
                )
                row = await cur.fetchone()
        return _to_workflow(row) if row is not None else None

    async def find_by_slug(self, slug: str) -> Workflow | None:
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"SELECT {_COLUMNS} FROM workflows WHERE slug = %s",
                    (slug,),
                )
                row = await cur.fetchone()
        return _to_workflow(row) if row is not None else None

    async def count(self) -> int:
        async with get_connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT COUNT(*) FROM workflows")
                row = await cur.fetchone()
        return int(row[0]) if row is not None else 0

    async def insert(self, values: dict[str, Any]) -> Workflow:
        columns = list(values)
        query = sql.SQL("INSERT INTO workflows ({}) VALUES ({}) RETURNING {}").format(
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            sql.SQL(", ").join(sql.Placeholder() for _ in columns),
            sql.SQL(_COLUMNS),
        )
        params = [_db_value(c, values[c]) for c in columns]
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                row = await cur.fetchone()
            await conn.commit()
        assert row is not None
        return _to_workflow(row)

    async def update(self, workflow_id: int, changes: dict[str, Any]) -> Workflow | None:
        """Apply column changes. Returns None if the workflow does not exist."""
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValueError(f"Columns not updatable: {sorted(unknown)}")
        if not changes:
            return await self.find_by_id(workflow_id)
        assignments = [
            sql.SQL("{} = {}").format(sql.Identifier(c), sql.Placeholder()) for c in changes
        ]
        query = sql.SQL(
            "UPDATE workflows SET {}, updated_at = NOW() WHERE id = {} RETURNING {}"
        ).format(
            sql.SQL(", ").join(assignments),
            sql.Placeholder(),
            sql.SQL(_COLUMNS),
        )
        params = [_db_value(c, v) for c, v in changes.items()] + [workflow_id]
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                row = await cur.fetchone()
            await conn.commit()
        return _to_workflow(row) if row is not None else None

    async def delete(self, workflow_id: int) -> bool:
        async with get_connection() as conn:
            cur = await conn.execute("DELETE FROM workflows WHERE id = %s", (workflow_id,))
            deleted = cur.rowcount == 1
            await conn.commit()
        return deleted
