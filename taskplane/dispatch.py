"""Workflow dispatcher: creates workflows, routes goals and schedules tasks."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from .audit import AuditService
from .contracts import EXECUTE_TASK_JOB, ExecutionJob
from .persistence.models import (
    OPEN_WORKFLOW_STATUSES,
    AuditEventType,
    AuditLevel,
    AuditLogEntry,
    ErrorDetail,
    Task,
    Workflow,
)
from .persistence.repository import WorkflowRepository
from .queue import JobQueue
from .routing import Router

logger = logging.getLogger(__name__)


class WorkflowDispatcher:
    """Service responsible for creating and dispatching new workflows."""

    def __init__(
        self,
        repository: WorkflowRepository,
        queue: JobQueue,
        router: Router,
        audit: AuditService,
        default_max_retries: int = 3,
    ) -> None:
        self._repository = repository
        self._queue = queue
        self._router = router
        self._audit = audit
        self._default_max_retries = default_max_retries

    async def create_workflow(
        self, goal: str, context: Optional[Dict[str, Any]] = None
    ) -> Workflow:
        """Create a workflow for ``goal`` and schedule the tasks it routes to.

        Args:
            goal: Free-form description of what the caller wants done.
            context: Optional structured payload passed to the router.

        Returns:
            The workflow as persisted at the end of dispatch. Routing failures
            are recorded on the workflow rather than raised.
        """
        workflow = Workflow(goal=goal, context=context or {})
        await self._repository.save_workflow(workflow)
        await self._audit.append(
            workflow.id,
            AuditEventType.WORKFLOW_CREATED,
            {"goal": goal, "trace_id": workflow.trace_id},
        )
        logger.info(f"Created workflow {workflow.id} trace_id={workflow.trace_id}")

        try:
            descriptors = await self._router.route(goal, workflow.context)
        except Exception as e:
            logger.error(f"Routing failed for workflow {workflow.id}: {e}")
            workflow.mark_failed(ErrorDetail.from_exception(e))
            await self._repository.save_workflow(workflow)
            await self._audit.append(
                workflow.id,
                AuditEventType.WORKFLOW_FAILED,
                {"reason": "routing_failed", "error": str(e)},
                level=AuditLevel.ERROR,
            )
            return workflow

        if not descriptors:
            logger.warning(f"Router produced no tasks for workflow {workflow.id}")
            return workflow

        # RUNNING must be stored before any task can be picked up by a worker.
        workflow.mark_running()
        await self._repository.save_workflow(workflow)

        scheduled: List[str] = []
        for descriptor in descriptors:
            task = Task(
                workflow_id=workflow.id,
                kind=descriptor.kind,
                name=descriptor.name,
                input=descriptor.input,
                max_retries=(
                    descriptor.max_retries
                    if descriptor.max_retries is not None
                    else self._default_max_retries
                ),
            )
            await self._repository.save_task(task)

            job = ExecutionJob(task_id=task.id, attempt_token=str(uuid.uuid4()))
            try:
                await self._queue.enqueue_now(EXECUTE_TASK_JOB, job.model_dump())
            except Exception as e:
                return await self._fail_enqueue(workflow, task, scheduled, e)
            scheduled.append(task.id)
            await self._audit.append(
                workflow.id,
                AuditEventType.TASK_SCHEDULED,
                {
                    "task_id": task.id,
                    "task_name": task.name,
                    "attempt_token": job.attempt_token,
                },
            )
        logger.info(f"Scheduled {len(descriptors)} task(s) for workflow {workflow.id}")
        return workflow

    async def _fail_enqueue(
        self, workflow: Workflow, task: Task, scheduled: List[str], error: Exception
    ) -> Workflow:
        # Only the task being enqueued has been saved without a job; later
        # descriptors were never persisted.
        logger.error(
            f"Enqueue failed for task {task.id} of workflow {workflow.id}: {error}. "
            f"{len(scheduled)} task(s) already enqueued"
        )
        workflow.mark_failed(ErrorDetail.from_exception(error))
        landed = await self._repository.save_workflow_if_status(
            workflow, OPEN_WORKFLOW_STATUSES
        )
        if not landed:
            logger.info(
                f"Workflow {workflow.id} reached a terminal status concurrently; not marking FAILED"
            )
            return await self._repository.get_workflow(workflow.id) or workflow
        await self._audit.append(
            workflow.id,
            AuditEventType.WORKFLOW_FAILED,
            {
                "reason": "enqueue_failed",
                "error": str(error),
                "unscheduled_task_id": task.id,
                "scheduled_task_ids": scheduled,
            },
            level=AuditLevel.ERROR,
        )
        return workflow

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        return await self._repository.get_workflow(workflow_id)

    async def get_workflow_by_trace_id(self, trace_id: str) -> Workflow | None:
        return await self._repository.get_workflow_by_trace_id(trace_id)

    async def list_workflows(self) -> List[Workflow]:
        return await self._repository.list_workflows()

    async def list_tasks(self, workflow_id: str) -> List[Task]:
        return await self._repository.list_tasks(workflow_id)

    async def list_logs(self, workflow_id: str) -> List[AuditLogEntry]:
        return await self._audit.list_entries(workflow_id)
