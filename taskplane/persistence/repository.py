"""Repository abstraction for workflow, task and audit persistence."""

from __future__ import annotations

from typing import Collection, Protocol

from .models import AuditLogEntry, Task, TaskStatus, Workflow, WorkflowStatus


class WorkflowRepository(Protocol):
    """Protocol for persistence backends.

    Every write is atomic for a single record only. Audit entries are
    append-only and have no update or delete operation.
    """

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Retrieve a workflow by id."""

    async def get_workflow_by_trace_id(self, trace_id: str) -> Workflow | None:
        """Retrieve a workflow by its external trace identifier."""

    async def save_workflow(self, workflow: Workflow) -> None:
        """Insert or overwrite a workflow."""

    async def save_workflow_if_status(
        self, workflow: Workflow, expected: Collection[WorkflowStatus]
    ) -> bool:
        """Overwrite a workflow only if its stored status is one of ``expected``.

        Returns ``True`` when the write landed.
        """

    async def list_workflows(self) -> list[Workflow]:
        """Return all persisted workflows, oldest first."""

    async def get_task(self, task_id: str) -> Task | None:
        """Retrieve a task by id."""

    async def save_task(self, task: Task) -> None:
        """Insert or overwrite a task."""

    async def save_task_if_status(
        self, task: Task, expected: Collection[TaskStatus]
    ) -> bool:
        """Overwrite a task only if its stored status is one of ``expected``.

        Returns ``True`` when the write landed.
        """

    async def list_tasks(self, workflow_id: str) -> list[Task]:
        """Return the tasks owned by a workflow in creation order."""

    async def append_audit_entry(self, entry: AuditLogEntry) -> AuditLogEntry:
        """Persist an audit entry and return it with its sequence id assigned."""

    async def list_audit_entries(self, workflow_id: str) -> list[AuditLogEntry]:
        """Return a workflow's audit entries ordered by timestamp."""
