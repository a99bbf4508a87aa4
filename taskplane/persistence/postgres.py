"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from typing import Any, Collection

import asyncpg

from .models import AuditLogEntry, Task, TaskStatus, Workflow, WorkflowStatus
from .repository import WorkflowRepository

_WORKFLOW_COLUMNS = (
    "id, trace_id, goal, context, status, result, error, created_at, updated_at"
)
_TASK_COLUMNS = (
    "id, workflow_id, kind, name, input, output, status, retry_count, max_retries, "
    "error, started_at, completed_at, created_at, updated_at"
)


def _dumps(value: Any) -> str | None:
    return None if value is None else json.dumps(value)


def _loads(value: Any) -> Any:
    # asyncpg hands JSONB back as text unless a codec is registered.
    if isinstance(value, str):
        return json.loads(value)
    return value


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                trace_id TEXT NOT NULL UNIQUE,
                goal TEXT NOT NULL,
                context JSONB NOT NULL,
                status TEXT NOT NULL,
                result JSONB,
                error JSONB,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                seq BIGSERIAL,
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                name TEXT NOT NULL,
                input JSONB,
                output JSONB,
                status TEXT NOT NULL,
                retry_count INTEGER NOT NULL,
                max_retries INTEGER NOT NULL,
                error JSONB,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_tasks_workflow ON tasks (workflow_id)"
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_log (
                id BIGSERIAL PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                level TEXT NOT NULL,
                event_type TEXT NOT NULL,
                details JSONB,
                timestamp TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_workflow ON audit_log (workflow_id)"
        )

    @staticmethod
    def _row_to_workflow(row: asyncpg.Record) -> Workflow:
        return Workflow(
            id=row["id"],
            trace_id=row["trace_id"],
            goal=row["goal"],
            context=_loads(row["context"]) or {},
            status=row["status"],
            result=_loads(row["result"]),
            error=_loads(row["error"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_task(row: asyncpg.Record) -> Task:
        return Task(
            id=row["id"],
            workflow_id=row["workflow_id"],
            kind=row["kind"],
            name=row["name"],
            input=_loads(row["input"]),
            output=_loads(row["output"]),
            status=row["status"],
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            error=_loads(row["error"]),
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE id = $1",
                workflow_id,
            )
        finally:
            await conn.close()
        return self._row_to_workflow(row) if row else None

    async def get_workflow_by_trace_id(self, trace_id: str) -> Workflow | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE trace_id = $1",
                trace_id,
            )
        finally:
            await conn.close()
        return self._row_to_workflow(row) if row else None

    async def save_workflow(self, workflow: Workflow) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                f"""
                INSERT INTO workflows ({_WORKFLOW_COLUMNS})
                VALUES ($1, $2, $3, $4::jsonb, $5, $6::jsonb, $7::jsonb, $8, $9)
                ON CONFLICT (id) DO UPDATE SET
                    goal = EXCLUDED.goal,
                    context = EXCLUDED.context,
                    status = EXCLUDED.status,
                    result = EXCLUDED.result,
                    error = EXCLUDED.error,
                    updated_at = EXCLUDED.updated_at
                """,
                workflow.id,
                workflow.trace_id,
                workflow.goal,
                json.dumps(workflow.context),
                workflow.status.value,
                _dumps(workflow.result),
                workflow.error.model_dump_json() if workflow.error else None,
                workflow.created_at,
                workflow.updated_at,
            )
        finally:
            await conn.close()

    async def save_workflow_if_status(
        self, workflow: Workflow, expected: Collection[WorkflowStatus]
    ) -> bool:
        statuses = [WorkflowStatus(s).value for s in expected]
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                UPDATE workflows
                SET goal = $1, context = $2::jsonb, status = $3, result = $4::jsonb,
                    error = $5::jsonb, updated_at = $6
                WHERE id = $7 AND status = ANY($8::text[])
                """,
                workflow.goal,
                json.dumps(workflow.context),
                workflow.status.value,
                _dumps(workflow.result),
                workflow.error.model_dump_json() if workflow.error else None,
                workflow.updated_at,
                workflow.id,
                statuses,
            )
        finally:
            await conn.close()
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        return status.endswith(" 1")

    async def list_workflows(self) -> list[Workflow]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflows ORDER BY created_at"
            )
        finally:
            await conn.close()
        return [self._row_to_workflow(r) for r in rows]

    async def get_task(self, task_id: str) -> Task | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = $1", task_id
            )
        finally:
            await conn.close()
        return self._row_to_task(row) if row else None

    async def save_task(self, task: Task) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                f"""
                INSERT INTO tasks ({_TASK_COLUMNS})
                VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, $7, $8, $9, $10::jsonb,
                        $11, $12, $13, $14)
                ON CONFLICT (id) DO UPDATE SET
                    input = EXCLUDED.input,
                    output = EXCLUDED.output,
                    status = EXCLUDED.status,
                    retry_count = EXCLUDED.retry_count,
                    max_retries = EXCLUDED.max_retries,
                    error = EXCLUDED.error,
                    started_at = EXCLUDED.started_at,
                    completed_at = EXCLUDED.completed_at,
                    updated_at = EXCLUDED.updated_at
                """,
                task.id,
                task.workflow_id,
                task.kind.value,
                task.name,
                _dumps(task.input),
                _dumps(task.output),
                task.status.value,
                task.retry_count,
                task.max_retries,
                task.error.model_dump_json() if task.error else None,
                task.started_at,
                task.completed_at,
                task.created_at,
                task.updated_at,
            )
        finally:
            await conn.close()

    async def save_task_if_status(
        self, task: Task, expected: Collection[TaskStatus]
    ) -> bool:
        statuses = [TaskStatus(s).value for s in expected]
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                UPDATE tasks
                SET input = $1::jsonb, output = $2::jsonb, status = $3, retry_count = $4,
                    max_retries = $5, error = $6::jsonb, started_at = $7,
                    completed_at = $8, updated_at = $9
                WHERE id = $10 AND status = ANY($11::text[])
                """,
                _dumps(task.input),
                _dumps(task.output),
                task.status.value,
                task.retry_count,
                task.max_retries,
                task.error.model_dump_json() if task.error else None,
                task.started_at,
                task.completed_at,
                task.updated_at,
                task.id,
                statuses,
            )
        finally:
            await conn.close()
        return status.endswith(" 1")

    async def list_tasks(self, workflow_id: str) -> list[Task]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE workflow_id = $1 ORDER BY created_at, seq",
                workflow_id,
            )
        finally:
            await conn.close()
        return [self._row_to_task(r) for r in rows]

    async def append_audit_entry(self, entry: AuditLogEntry) -> AuditLogEntry:
        conn = await self._connect()
        try:
            entry_id = await conn.fetchval(
                """
                INSERT INTO audit_log (workflow_id, level, event_type, details, timestamp)
                VALUES ($1, $2, $3, $4::jsonb, $5) RETURNING id
                """,
                entry.workflow_id,
                entry.level.value,
                entry.event_type,
                _dumps(entry.details),
                entry.timestamp,
            )
        finally:
            await conn.close()
        return entry.model_copy(update={"id": entry_id})

    async def list_audit_entries(self, workflow_id: str) -> list[AuditLogEntry]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT id, workflow_id, level, event_type, details, timestamp
                FROM audit_log WHERE workflow_id = $1 ORDER BY timestamp, id
                """,
                workflow_id,
            )
        finally:
            await conn.close()
        return [
            AuditLogEntry(
                id=r["id"],
                workflow_id=r["workflow_id"],
                level=r["level"],
                event_type=r["event_type"],
                details=_loads(r["details"]),
                timestamp=r["timestamp"],
            )
            for r in rows
        ]
