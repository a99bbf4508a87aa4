"""Workflow status reconciliation.

The workflow's aggregate status is always recomputed from the authoritative
set of task statuses. There is no counter or completion latch, so calling
``Reconciler.reconcile`` redundantly or out of order is safe.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from .audit import AuditService
from .persistence.models import (
    OPEN_WORKFLOW_STATUSES,
    AuditEventType,
    AuditLevel,
    ErrorDetail,
    Task,
    TaskStatus,
    Workflow,
    WorkflowStatus,
)
from .persistence.repository import WorkflowRepository

logger = logging.getLogger(__name__)

RECONCILED_FAILURE_MESSAGE = "Reconciliation found failed task(s)"


@dataclass(frozen=True)
class Verdict:
    """Terminal status a workflow should move to."""

    status: WorkflowStatus
    result: Any = None
    error: Optional[ErrorDetail] = None


def evaluate(workflow: Workflow, tasks: Sequence[Task]) -> Optional[Verdict]:
    """Decide the workflow's terminal status from its tasks, or ``None`` to leave it."""
    if workflow.status.is_terminal:
        return None

    failed = [t for t in tasks if t.status is TaskStatus.FAILED]
    if failed:
        return Verdict(
            status=WorkflowStatus.FAILED,
            error=ErrorDetail(
                message=RECONCILED_FAILURE_MESSAGE,
                detail=", ".join(f"{t.name} ({t.id})" for t in failed),
            ),
        )

    if all(t.status is TaskStatus.COMPLETED for t in tasks):
        return Verdict(
            status=WorkflowStatus.COMPLETED,
            result={
                "message": "All tasks completed successfully",
                "task_count": len(tasks),
                "tasks": [
                    {"id": t.id, "name": t.name, "output": t.output} for t in tasks
                ],
            },
        )

    return None


class Reconciler:
    """Applies ``evaluate`` to the stored workflow."""

    def __init__(self, repository: WorkflowRepository, audit: AuditService) -> None:
        self._repository = repository
        self._audit = audit

    async def reconcile(self, workflow_id: str) -> Optional[Workflow]:
        """Recompute and persist the workflow's status.

        The write is a compare-and-set against the non-terminal statuses, so a
        terminal status written concurrently by another worker is never
        overwritten by a verdict computed from an older snapshot.
        """
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            logger.error(f"Reconciliation skipped: workflow not found: {workflow_id}")
            return None

        tasks = await self._repository.list_tasks(workflow_id)
        verdict = evaluate(workflow, tasks)
        if verdict is None:
            return workflow

        if verdict.status is WorkflowStatus.FAILED:
            workflow.mark_failed(verdict.error)
        else:
            workflow.mark_completed(verdict.result)

        landed = await self._repository.save_workflow_if_status(
            workflow, OPEN_WORKFLOW_STATUSES
        )
        if not landed:
            logger.info(
                f"Workflow {workflow_id} reached a terminal status concurrently; reconciliation result dropped"
            )
            return await self._repository.get_workflow(workflow_id)

        if verdict.status is WorkflowStatus.FAILED:
            await self._audit.append(
                workflow_id,
                AuditEventType.WORKFLOW_FAILED,
                {"reason": RECONCILED_FAILURE_MESSAGE, "failed_tasks": verdict.error.detail},
                level=AuditLevel.ERROR,
            )
        else:
            await self._audit.append(
                workflow_id,
                AuditEventType.WORKFLOW_COMPLETED,
                {"reason": "Reconciliation confirmed completion", "task_count": len(tasks)},
            )
        logger.info(f"Workflow {workflow_id} reconciled to {verdict.status.value}")
        return workflow
