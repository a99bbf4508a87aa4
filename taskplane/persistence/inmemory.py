"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import asyncio
from typing import Collection, Dict, List

from .models import AuditLogEntry, Task, TaskStatus, Workflow, WorkflowStatus
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._tasks: Dict[str, Task] = {}
        self._audit: List[AuditLogEntry] = []
        self._audit_seq = 0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def get_workflow_by_trace_id(self, trace_id: str) -> Workflow | None:
        for wf in self._workflows.values():
            if wf.trace_id == trace_id:
                return wf.model_copy(deep=True)
        return None

    async def save_workflow(self, workflow: Workflow) -> None:
        async with self._lock:
            self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def save_workflow_if_status(
        self, workflow: Workflow, expected: Collection[WorkflowStatus]
    ) -> bool:
        async with self._lock:
            current = self._workflows.get(workflow.id)
            if current is None or current.status not in expected:
                return False
            self._workflows[workflow.id] = workflow.model_copy(deep=True)
            return True

    async def list_workflows(self) -> list[Workflow]:
        return [wf.model_copy(deep=True) for wf in self._workflows.values()]

    # ------------------------------------------------------------------
    async def get_task(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def save_task(self, task: Task) -> None:
        async with self._lock:
            self._tasks[task.id] = task.model_copy(deep=True)

    async def save_task_if_status(
        self, task: Task, expected: Collection[TaskStatus]
    ) -> bool:
        async with self._lock:
            current = self._tasks.get(task.id)
            if current is None or current.status not in expected:
                return False
            self._tasks[task.id] = task.model_copy(deep=True)
            return True

    async def list_tasks(self, workflow_id: str) -> list[Task]:
        return [
            task.model_copy(deep=True)
            for task in self._tasks.values()
            if task.workflow_id == workflow_id
        ]

    # ------------------------------------------------------------------
    async def append_audit_entry(self, entry: AuditLogEntry) -> AuditLogEntry:
        async with self._lock:
            self._audit_seq += 1
            stored = entry.model_copy(update={"id": self._audit_seq})
            self._audit.append(stored)
        return stored

    async def list_audit_entries(self, workflow_id: str) -> list[AuditLogEntry]:
        entries = [e for e in self._audit if e.workflow_id == workflow_id]
        return sorted(entries, key=lambda e: (e.timestamp, e.id or 0))
