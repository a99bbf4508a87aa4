"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Collection

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


def _loads(value: str | None) -> Any:
    return None if value is None else json.loads(value)


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._write_lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                trace_id TEXT NOT NULL UNIQUE,
                goal TEXT NOT NULL,
                context TEXT NOT NULL,
                status TEXT NOT NULL,
                result TEXT,
                error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                name TEXT NOT NULL,
                input TEXT,
                output TEXT,
                status TEXT NOT NULL,
                retry_count INTEGER NOT NULL,
                max_retries INTEGER NOT NULL,
                error TEXT,
                started_at TEXT,
                completed_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_tasks_workflow ON tasks (workflow_id)"
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workflow_id TEXT NOT NULL,
                level TEXT NOT NULL,
                event_type TEXT NOT NULL,
                details TEXT,
                timestamp TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_workflow ON audit_log (workflow_id)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> sqlite3.Cursor:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _workflow_params(workflow: Workflow) -> tuple:
        return (
            workflow.id,
            workflow.trace_id,
            workflow.goal,
            json.dumps(workflow.context),
            workflow.status.value,
            _dumps(workflow.result),
            workflow.error.model_dump_json() if workflow.error else None,
            workflow.created_at.isoformat(),
            workflow.updated_at.isoformat(),
        )

    @staticmethod
    def _row_to_workflow(row: sqlite3.Row) -> Workflow:
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
    def _row_to_task(row: sqlite3.Row) -> Task:
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
    # Repository API
    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE id = ?",
            workflow_id,
        )
        return self._row_to_workflow(row) if row else None

    async def get_workflow_by_trace_id(self, trace_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE trace_id = ?",
            trace_id,
        )
        return self._row_to_workflow(row) if row else None

    async def save_workflow(self, workflow: Workflow) -> None:
        await asyncio.to_thread(
            self._execute,
            f"""
            INSERT INTO workflows ({_WORKFLOW_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                goal = excluded.goal,
                context = excluded.context,
                status = excluded.status,
                result = excluded.result,
                error = excluded.error,
                updated_at = excluded.updated_at
            """,
            *self._workflow_params(workflow),
        )

    async def save_workflow_if_status(
        self, workflow: Workflow, expected: Collection[WorkflowStatus]
    ) -> bool:
        statuses = [WorkflowStatus(s).value for s in expected]
        if not statuses:
            return False
        placeholders = ", ".join("?" for _ in statuses)
        cur = await asyncio.to_thread(
            self._execute,
            f"""
            UPDATE workflows
            SET goal = ?, context = ?, status = ?, result = ?, error = ?, updated_at = ?
            WHERE id = ? AND status IN ({placeholders})
            """,
            workflow.goal,
            json.dumps(workflow.context),
            workflow.status.value,
            _dumps(workflow.result),
            workflow.error.model_dump_json() if workflow.error else None,
            workflow.updated_at.isoformat(),
            workflow.id,
            *statuses,
        )
        return cur.rowcount == 1

    async def list_workflows(self) -> list[Workflow]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_WORKFLOW_COLUMNS} FROM workflows ORDER BY created_at",
        )
        return [self._row_to_workflow(r) for r in rows]

    async def get_task(self, task_id: str) -> Task | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ?",
            task_id,
        )
        return self._row_to_task(row) if row else None

    async def save_task(self, task: Task) -> None:
        await asyncio.to_thread(
            self._execute,
            f"""
            INSERT INTO tasks ({_TASK_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                input = excluded.input,
                output = excluded.output,
                status = excluded.status,
                retry_count = excluded.retry_count,
                max_retries = excluded.max_retries,
                error = excluded.error,
                started_at = excluded.started_at,
                completed_at = excluded.completed_at,
                updated_at = excluded.updated_at
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
            task.started_at.isoformat() if task.started_at else None,
            task.completed_at.isoformat() if task.completed_at else None,
            task.created_at.isoformat(),
            task.updated_at.isoformat(),
        )

    async def save_task_if_status(
        self, task: Task, expected: Collection[TaskStatus]
    ) -> bool:
        statuses = [TaskStatus(s).value for s in expected]
        if not statuses:
            return False
        placeholders = ", ".join("?" for _ in statuses)
        cur = await asyncio.to_thread(
            self._execute,
            f"""
            UPDATE tasks
            SET input = ?, output = ?, status = ?, retry_count = ?, max_retries = ?,
                error = ?, started_at = ?, completed_at = ?, updated_at = ?
            WHERE id = ? AND status IN ({placeholders})
            """,
            _dumps(task.input),
            _dumps(task.output),
            task.status.value,
            task.retry_count,
            task.max_retries,
            task.error.model_dump_json() if task.error else None,
            task.started_at.isoformat() if task.started_at else None,
            task.completed_at.isoformat() if task.completed_at else None,
            task.updated_at.isoformat(),
            task.id,
            *statuses,
        )
        return cur.rowcount == 1

    async def list_tasks(self, workflow_id: str) -> list[Task]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_TASK_COLUMNS} FROM tasks WHERE workflow_id = ? ORDER BY created_at, rowid",
            workflow_id,
        )
        return [self._row_to_task(r) for r in rows]

    async def append_audit_entry(self, entry: AuditLogEntry) -> AuditLogEntry:
        cur = await asyncio.to_thread(
            self._execute,
            "INSERT INTO audit_log (workflow_id, level, event_type, details, timestamp) VALUES (?, ?, ?, ?, ?)",
            entry.workflow_id,
            entry.level.value,
            entry.event_type,
            _dumps(entry.details),
            entry.timestamp.isoformat(),
        )
        return entry.model_copy(update={"id": cur.lastrowid})

    async def list_audit_entries(self, workflow_id: str) -> list[AuditLogEntry]:
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT id, workflow_id, level, event_type, details, timestamp
            FROM audit_log WHERE workflow_id = ? ORDER BY timestamp, id
            """,
            workflow_id,
        )
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
